"""Runtime session registry.

A session binds one agent execution to a durable, versioned record: an agent
working on a task (task scope) or working for its account in general (system
scope). Each scope has at most one open session; every new session for a
scope gets the next generation number and a stable key such as
``task:<taskId>:agent:<agentSlug>:<accountId>:v<generation>``. Closed
sessions are kept as history and never reopened.

Why a partial unique index instead of a lock?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Pollers for the same agent may run in separate processes. The database
rejects a second open row for a scope, so the registry only has to re-read
after a failed insert; unrelated scopes never wait on each other.
"""
