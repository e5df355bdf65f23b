"""Device-side sampler: permission flow, periodic GPS submission, session marker."""
