# src/fieldtrack/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, cast

from .. import api
from ..assignments.models import Actor
from ..core.ports import Position
from ..core.state import AppState
from ..errors import FieldTrackError, ValidationError

CommandEmitter = Callable[[str], None]
CommandHandler3 = Callable[[AppState, list[str], Actor | None], str]
CommandHandler4 = Callable[[AppState, list[str], Actor | None, CommandEmitter | None], str]
CommandHandler = CommandHandler3 | CommandHandler4

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        actor: Actor | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Domain errors become a readable reply line.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 4

        try:
            if nparams >= 4:
                h4 = cast(CommandHandler4, handler)
                return h4(state, args, actor, emit)
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, actor)
        except FieldTrackError as exc:
            logger.debug("Command /%s failed: %s", name, exc.message)
            return f"Error ({exc.status_code}): {exc.message}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument helpers ----


def _split_kv(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Positional args plus key=value options."""
    pos: list[str] = []
    opts: dict[str, str] = {}
    for a in args:
        if "=" in a:
            k, v = a.split("=", 1)
            opts[k.strip().lower()] = v.strip()
        else:
            pos.append(a)
    return pos, opts


def _int(raw: str, name: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None


def _require_actor(actor: Actor | None) -> Actor:
    if actor is None:
        raise ValidationError("Not logged in. Use /login <user_id> first.")
    return actor


def _fmt_ts(ts: Any) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(float(ts)).strftime("%Y-%m-%d %H:%M:%S")


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def _assignment_line(a: dict[str, Any]) -> str:
    users = ",".join(a.get("user_ids") or [])
    return (
        f"#{a['id']} {a.get('ticket_number') or ''} task={a['task_id']} ({a.get('task_title') or '?'}) "
        f"date={a['date']} status={a['computed_status']} users={users} "
        f"start={_fmt_ts(a.get('start_time'))} end={_fmt_ts(a.get('end_time'))}"
    )


# ---- commands ----


def cmd_help(state: AppState, args: list[str], actor: Actor | None) -> str:
    return registry.build_help()


def cmd_login(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /login <user_id>  -> act as that user (roles come from the directory)
    """
    if not args:
        return "Usage: /login <user_id>"
    user = state.directory.get_user(args[0])
    if user is None:
        return f"Unknown user: {args[0]}"
    state.current_actor = state.actor_for(user)
    role_str = ", ".join(sorted(user.roles)) or "worker"
    return f"Logged in as {user.id} ({role_str})."


def cmd_whoami(state: AppState, args: list[str], actor: Actor | None) -> str:
    if actor is None:
        return "Not logged in."
    return f"{actor.user_id} roles={','.join(sorted(actor.roles)) or '-'} elevated={actor.is_elevated}"


def cmd_user_add(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /user-add <id> [name=..] [roles=admin,worker]
    """
    pos, opts = _split_kv(args)
    if not pos:
        return "Usage: /user-add <id> [name=...] [roles=a,b]"
    roles = [r for r in opts.get("roles", "").split(",") if r]
    user = state.directory.add_user(pos[0], name=opts.get("name", ""), roles=roles)
    return f"User {user.id} saved (roles: {', '.join(sorted(user.roles)) or '-'})."


def cmd_task_add(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /task-add <title words...> [start=08:00] [end=17:00] [location=...]
    """
    pos, opts = _split_kv(args)
    if not pos:
        return "Usage: /task-add <title> [start=HH:MM] [end=HH:MM] [location=...]"
    task_id = state.directory.add_task(
        title=" ".join(pos),
        location=opts.get("location", ""),
        scheduled_start=opts.get("start"),
        scheduled_end=opts.get("end"),
    )
    return f"Task {task_id} created."


def cmd_assign(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /assign <task_id> <user1,user2> [date=YYYY-MM-DD]
    """
    pos, opts = _split_kv(args)
    if len(pos) < 2:
        return "Usage: /assign <task_id> <user1,user2,...> [date=YYYY-MM-DD]"
    out = api.create_assignment(
        state,
        _require_actor(actor),
        task_id=_int(pos[0], "task_id"),
        user_ids=[u for u in pos[1].split(",") if u],
        date=opts.get("date"),
    )
    return f"{out['message']}\n{_assignment_line(out['assignment'])}"


def _transition(fn: Callable[..., dict[str, Any]]) -> CommandHandler3:
    def handler(state: AppState, args: list[str], actor: Actor | None) -> str:
        if not args:
            return "Usage: /<command> <assignment_id>"
        out = fn(state, _require_actor(actor), _int(args[0], "assignment_id"))
        if "assignment" in out:
            return f"{out['message']}\n{_assignment_line(out['assignment'])}"
        return str(out["message"])

    return handler


def cmd_cancel(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /cancel <assignment_id> [force]
    """
    if not args:
        return "Usage: /cancel <assignment_id> [force]"
    force = len(args) > 1 and args[1].lower() == "force"
    out = api.cancel_assignment(state, _require_actor(actor), _int(args[0], "assignment_id"), force=force)
    return f"{out['message']}\n{_assignment_line(out['assignment'])}"


def cmd_show(state: AppState, args: list[str], actor: Actor | None) -> str:
    if not args:
        return "Usage: /show <assignment_id>"
    out = api.show_assignment(state, _require_actor(actor), _int(args[0], "assignment_id"))
    dur = out["duration_minutes"]
    return _assignment_line(out["assignment"]) + (f" duration={dur}min" if dur is not None else "")


def cmd_list(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /list [status=inactive] [user=u1] [task=3] [date=...] [page=1] [per_page=15] [sort=date] [order=asc]
    """
    _, opts = _split_kv(args)
    out = api.list_assignments(
        state,
        _require_actor(actor),
        user_id=opts.get("user"),
        task_id=_int(opts["task"], "task") if "task" in opts else None,
        computed_status=opts.get("status"),
        date=opts.get("date"),
        sort_by=opts.get("sort", "created_at"),
        sort_order=opts.get("order", "desc"),
        page=_int(opts.get("page", "1"), "page"),
        per_page=_int(opts["per_page"], "per_page") if "per_page" in opts else None,
    )
    lines = [_assignment_line(a) for a in out["data"]]
    lines.append(f"page {out['current_page']}/{out['last_page']} total={out['total']}")
    return "\n".join(lines)


def cmd_mine(state: AppState, args: list[str], actor: Actor | None) -> str:
    _, opts = _split_kv(args)
    out = api.my_assignments(
        state,
        _require_actor(actor),
        status=opts.get("status"),
        date=opts.get("date"),
        page=_int(opts.get("page", "1"), "page"),
    )
    if not out["data"]:
        return "No assignments."
    return "\n".join(_assignment_line(a) for a in out["data"])


def cmd_record(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /record <assignment_id> <lat> <lon> [accuracy=..] [address=..]
    """
    pos, opts = _split_kv(args)
    if len(pos) < 3:
        return "Usage: /record <assignment_id> <lat> <lon> [accuracy=..] [address=..]"
    out = api.record_location(
        state,
        _require_actor(actor),
        assignment_id=_int(pos[0], "assignment_id"),
        latitude=pos[1],
        longitude=pos[2],
        accuracy=opts.get("accuracy"),
        address=opts.get("address"),
        tracking_status="manual",
    )
    loc = out["location"]
    return f"{out['message']} (#{loc['id']} at {loc['latitude']:.6f}, {loc['longitude']:.6f})"


def cmd_batch(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /batch <json array of {assignment_id, latitude, longitude, ...}>
    """
    if not args:
        return "Usage: /batch [{\"assignment_id\": 1, \"latitude\": 40.0, \"longitude\": -74.0}, ...]"
    try:
        items = json.loads(" ".join(args))
    except ValueError:
        return "Batch must be a JSON array."
    if not isinstance(items, list):
        return "Batch must be a JSON array."
    return _dump(api.record_locations_batch(state, _require_actor(actor), items))


def cmd_route(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /route <assignment_id> [user_id] [from=..] [to=..]
    """
    pos, opts = _split_kv(args)
    if not pos:
        return "Usage: /route <assignment_id> [user_id] [from=YYYY-MM-DD] [to=YYYY-MM-DD]"
    me = _require_actor(actor)
    out = api.route(
        state,
        me,
        _int(pos[0], "assignment_id"),
        pos[1] if len(pos) > 1 else me.user_id,
        date_from=opts.get("from"),
        date_to=opts.get("to"),
    )
    return (
        f"Route of {out['user_id']} on assignment {out['assignment_id']}: "
        f"{out['total_points']} point(s), {out['total_distance_km']:.2f} km, "
        f"{_fmt_ts(out['start_time'])} -> {_fmt_ts(out['end_time'])}"
    )


def cmd_current(state: AppState, args: list[str], actor: Actor | None) -> str:
    if not args:
        return "Usage: /current <assignment_id>"
    out = api.current_locations(state, _require_actor(actor), _int(args[0], "assignment_id"))
    lines = [f"Tracked {out['tracked_users']}/{out['total_users']} user(s):"]
    for uid, loc in out["current_locations"].items():
        if loc is None:
            lines.append(f"  {uid}: no location yet")
        else:
            lines.append(
                f"  {uid}: {loc['latitude']:.6f}, {loc['longitude']:.6f} at {_fmt_ts(loc['recorded_at'])}"
                f" ({loc['address'] or '-'})"
            )
    return "\n".join(lines)


def cmd_nearby(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /nearby <lat> <lon> [radius=1] [assignment=..]
    """
    pos, opts = _split_kv(args)
    if len(pos) < 2:
        return "Usage: /nearby <lat> <lon> [radius=km] [assignment=id]"
    out = api.nearby(
        state,
        _require_actor(actor),
        latitude=pos[0],
        longitude=pos[1],
        radius_km=opts.get("radius", "1"),
        assignment_id=_int(opts["assignment"], "assignment") if "assignment" in opts else None,
    )
    lines = [f"{h['distance_km']:.2f} km  #{h['id']} {h['user_id']} assignment={h['assignment_id']}" for h in out["data"]]
    lines.append(f"{out['total']} sample(s) within {out['search_center']['radius_km']} km")
    return "\n".join(lines)


def cmd_stats(state: AppState, args: list[str], actor: Actor | None) -> str:
    """
    /stats                 -> global (admins)
    /stats assignment <id> -> per assignment
    /stats user [id]       -> per user (self by default)
    """
    me = _require_actor(actor)
    if not args:
        return _dump(api.location_statistics(state, me))
    sub = args[0].lower()
    if sub == "assignment" and len(args) > 1:
        return _dump(api.location_statistics(state, me, assignment_id=_int(args[1], "assignment_id")))
    if sub == "user":
        uid = args[1] if len(args) > 1 else me.user_id
        out = api.location_statistics(state, me, user_id=uid)
        out["assignments"] = api.assignment_statistics_for_user(state, me, uid)
        return _dump(out)
    return "Usage: /stats | /stats assignment <id> | /stats user [id]"


def _replace_sampler(state: AppState, loop: Any, user_id: str, position: Position) -> Any:
    """Swap in a fresh sampler; the previous one is stopped (marker kept) and closed."""
    from .bootstrap import build_sampler

    old = state.sampler
    if old is not None:
        loop.run(old.aclose())
    state.sampler = build_sampler(state, user_id, position)
    return state.sampler


def cmd_track(
    state: AppState,
    args: list[str],
    actor: Actor | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /track start <assignment_id> <lat> <lon>  -> simulated device sampling
    /track move <lat> <lon>
    /track resume <lat> <lon>                 -> pick up a session saved before a restart
    /track now | stop | status
    """
    from .runner import get_background_loop

    if not args:
        return "Usage: /track start <assignment_id> <lat> <lon> | resume <lat> <lon> | move <lat> <lon> | now | stop | status"
    sub = args[0].lower()
    loop = get_background_loop()

    if sub in ("start", "resume"):
        current = state.sampler
        if current is not None and current.is_active:
            return f"Tracking already active for assignment {current.assignment_id}. Use /track stop first."

    if sub == "start":
        if len(args) < 4:
            return "Usage: /track start <assignment_id> <lat> <lon>"
        me = _require_actor(actor)
        assignment_id = _int(args[1], "assignment_id")
        pos = Position(latitude=float(args[2]), longitude=float(args[3]))
        sampler = _replace_sampler(state, loop, me.user_id, pos)
        if emit:
            with contextlib.suppress(Exception):
                emit("[TRACK] Requesting location permission...")
        if not loop.run(sampler.start(assignment_id)):
            return "Tracking was stopped before it started."
        return f"Tracking assignment {sampler.assignment_id} every {state.settings.sample_interval_seconds:.0f}s."

    if sub == "resume":
        if len(args) < 3:
            return "Usage: /track resume <lat> <lon>"
        me = _require_actor(actor)
        pos = Position(latitude=float(args[1]), longitude=float(args[2]))
        sampler = _replace_sampler(state, loop, me.user_id, pos)
        if not loop.run(sampler.resume()):
            return "No tracking session to resume."
        return f"Resumed tracking of assignment {sampler.assignment_id}."

    sampler = state.sampler
    if sampler is None:
        return "Tracking is not running."

    if sub == "move":
        if len(args) < 3:
            return "Usage: /track move <lat> <lon>"
        provider = getattr(sampler, "_provider", None)
        if provider is None or not hasattr(provider, "move_to"):
            return "This sampler cannot be moved."
        provider.move_to(float(args[1]), float(args[2]))
        return "Position updated."
    if sub == "now":
        ok = loop.run(sampler.record_now())
        return "Location recorded." if ok else "Location not recorded (see log)."
    if sub == "stop":
        loop.run(sampler.stop())
        return "Tracking stopped."
    if sub == "status":
        return (
            f"state={sampler.state.value} assignment={sampler.assignment_id} "
            f"since={_fmt_ts(sampler.started_at)} ok={sampler.samples_recorded} failed={sampler.samples_failed}"
        )
    return "Unknown /track subcommand."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("login", cmd_login, help_text="Act as a user: /login <user_id>.")
registry.register("whoami", cmd_whoami, help_text="Show the current user.")
registry.register("user-add", cmd_user_add, help_text="Register a user: /user-add <id> [roles=admin].")
registry.register("task-add", cmd_task_add, help_text="Create a task: /task-add <title> [start=08:00] [end=17:00].")
registry.register("assign", cmd_assign, help_text="Assign a task: /assign <task_id> <u1,u2> [date=...].")
registry.register("show", cmd_show, help_text="Show one assignment: /show <id>.")
registry.register("start", _transition(api.start_assignment), help_text="Start an assignment: /start <id>.")
registry.register("complete", _transition(api.complete_assignment), help_text="Complete: /complete <id>.")
registry.register("cancel", cmd_cancel, help_text="Reset to pending: /cancel <id> [force].")
registry.register("delete", _transition(api.delete_assignment), help_text="Delete an assignment: /delete <id>.")
registry.register("list", cmd_list, help_text="List assignments: /list [status=..] [user=..] [page=..].")
registry.register("mine", cmd_mine, help_text="My assignments: /mine [status=pending].")
registry.register("record", cmd_record, help_text="Record a manual location: /record <id> <lat> <lon>.")
registry.register("batch", cmd_batch, help_text="Record a JSON batch of locations.")
registry.register("route", cmd_route, help_text="Route + distance: /route <id> [user_id].")
registry.register("current", cmd_current, help_text="Latest location per member: /current <id>.")
registry.register("nearby", cmd_nearby, help_text="Samples near a point: /nearby <lat> <lon> [radius=km].")
registry.register("stats", cmd_stats, help_text="Tracking statistics: /stats [assignment <id> | user [id]].")
registry.register("track", cmd_track, help_text="Simulated device sampler: /track start|resume|move|now|stop|status.")
