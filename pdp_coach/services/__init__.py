"""Session execution services: timeline, timers, recording, analysis and the runner."""
