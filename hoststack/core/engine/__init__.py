"""
Provisioning transaction engine.

    registry.py       tiered, append-only undo log
    tracker.py        created paths and started services
    prober.py         skip-or-run decision per step
    access_guard.py   remote-access safety before default-deny
    compensations.py  executes one tagged undo action
    rollback.py       drains registry and tracker in order
    step.py           step contract and prompters
    orchestrator.py   sequencing, rollback decision, persistence
"""
