"""
Tandem
======

Lifecycle engine for course ↔ industry‑project partnerships: request,
approve or reject, run, complete.

Import structure
----------------
`import tandem` is intentionally cheap: nothing is imported by default.
The SQL layer (*sqlmodel*) is only loaded when you explicitly import
:pymod:`tandem.db` or :pymod:`tandem.store_db`.

Sub‑modules
~~~~~~~~~~~
- :pymod:`tandem.models`       – ``Partnership`` dataclass + status enums
- :pymod:`tandem.dimensions`   – request period buckets and day counters
- :pymod:`tandem.status`       – date‑driven ``resolve`` helper
- :pymod:`tandem.lifecycle`    – ``PartnershipLifecycle`` state machine
- :pymod:`tandem.store`        – store protocol + in‑memory store
- :pymod:`tandem.store_db`     – SQL‑backed store
- :pymod:`tandem.events`       – event envelope and notifiers
- :pymod:`tandem.sweep`        – daily refresh of date‑driven statuses
- :pymod:`tandem.analytics`    – per‑quarter reporting

Quick start
-----------
>>> from tandem.lifecycle import PartnershipLifecycle
>>> from tandem.store import InMemoryPartnershipStore
>>> lc = PartnershipLifecycle(InMemoryPartnershipStore())
>>> p = lc.create("course-1", "project-1", "alice", "bob", "Fancy working together?")
>>> lc.approve(p.id).status
<PartnershipStatus.APPROVED: 'approved'>

"""

__all__ = [
    "models",
    "dimensions",
    "status",
    "lifecycle",
    "store",
    "store_db",
    "events",
    "sweep",
    "analytics",
]

__version__ = "0.1.0"
