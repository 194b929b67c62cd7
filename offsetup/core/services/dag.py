"""
Plan DAG utilities (pure).

Step dependency bookkeeping, cycle detection and the scheduling
helpers the engine uses: which steps are ready, and which of those may
run together without fighting over the system package-manager lock.
No I/O, no subprocess.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from offsetup.core.models.plan import LOCKED_KINDS, Step


def validate_dag(steps: Sequence[Step]) -> list[str]:
    """Validate the step dependency DAG.

    Checks for:
    - Duplicate step IDs
    - References to non-existent step IDs
    - Cycles (Kahn's algorithm)

    Returns:
        List of error strings (empty = valid).
    """
    errors: list[str] = []
    ids = {s.id for s in steps}

    seen: set[str] = set()
    for s in steps:
        if s.id in seen:
            errors.append(f"Duplicate step ID: {s.id}")
        seen.add(s.id)

    for s in steps:
        for dep in s.depends_on:
            if dep not in ids:
                errors.append(f"Step '{s.id}' depends on unknown step '{dep}'")

    if errors:
        return errors

    if len(topological_order(steps)) < len(steps):
        errors.append("Dependency cycle detected in plan steps")

    return errors


def topological_order(steps: Sequence[Step]) -> list[Step]:
    """Kahn's algorithm, stable with respect to the input order.

    Steps caught in a cycle are left out of the result.
    """
    index = {s.id: i for i, s in enumerate(steps)}
    in_degree = {s.id: len(set(s.depends_on)) for s in steps}
    successors: dict[str, list[str]] = {s.id: [] for s in steps}
    for s in steps:
        for dep in set(s.depends_on):
            if dep in successors:
                successors[dep].append(s.id)

    ready = sorted((sid for sid, deg in in_degree.items() if deg == 0), key=index.get)
    ordered: list[Step] = []
    while ready:
        sid = ready.pop(0)
        ordered.append(steps[index[sid]])
        for succ in successors[sid]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                ready.append(succ)
        ready.sort(key=index.get)
    return ordered


def ready_steps(
    steps: Iterable[Step],
    unblocked: set[str],
    started: set[str],
) -> list[Step]:
    """Steps not yet started whose dependencies have all unblocked."""
    return [
        step for step in steps
        if step.id not in started and all(d in unblocked for d in step.depends_on)
    ]


def needs_system_lock(step: Step) -> bool:
    """Whether the step drives a system-wide package manager."""
    if step.kind in LOCKED_KINDS:
        return True
    return step.kind == "command" and step.stage == "source_install"


def enforce_lock_safety(steps: Sequence[Step]) -> list[Step]:
    """Filter a ready set to steps that may run concurrently.

    At most one lock-holding step is kept, and only when it is first
    in plan order; lock-free steps (downloads, provisioning) can all
    run together.
    """
    safe: list[Step] = []
    for step in steps:
        if needs_system_lock(step):
            if not safe:
                return [step]
            break
        safe.append(step)
    return safe
