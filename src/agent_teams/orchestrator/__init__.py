"""Leader/worker delegation of tickets to CLI agent processes.

Why polling instead of an event bus?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Workers are independent agent processes that only share two things with
the leader: a ticket store reached through the ``tk`` CLI, and a session
directory on disk. Neither offers change notifications, so the leader
samples them on a fixed interval:

- ticket status and notes (completion, progress comments);
- process liveness and the child-process table (busy vs idle);
- the newest transcript/heartbeat mtime in the session directory.

One asyncio task visits the workers sequentially, so the registry is only
mutated on the event loop and needs no locks. Every external call is
time-bounded and failures are retried on the next tick.
"""
