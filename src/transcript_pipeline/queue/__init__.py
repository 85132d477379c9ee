"""Durable task queue: leases, conditional writes, flow graph, dispatcher and reaper.

Dispatcher and reaper hold no state between invocations. Every coordination
point is an expected-status-guarded write to the shared SQLite task table, so
any number of invocations (HTTP trigger, CLI, cron) may run side by side.
"""
