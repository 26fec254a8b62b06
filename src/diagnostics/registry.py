from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .errors import CyclicDependency, DuplicateProbeId, MutatingProbeRejected
from .models import Context, Probe

logger = logging.getLogger(__name__)


class ProbeRegistry:
    """
    Ordered, declarative set of probes for one target role.

    Registration validates ids, read-only contracts and the dependency partial order;
    any violation raises immediately so a bad registry never reaches the executor.
    """

    def __init__(self, name: str, probes: Optional[Iterable[Probe]] = None):
        self.name = name
        self._probes: Dict[str, Probe] = {}
        for p in probes or ():
            self.register(p)

    def register(self, probe: Probe) -> Probe:
        if probe.id in self._probes:
            raise DuplicateProbeId(probe.id)
        if probe.mutates:
            raise MutatingProbeRejected(probe.id)

        cycle = self._find_cycle(probe)
        if cycle:
            raise CyclicDependency(cycle)

        self._probes[probe.id] = probe
        logger.debug("registry %s: registered %s", self.name, probe.id)
        return probe

    def _find_cycle(self, probe: Probe) -> Optional[List[str]]:
        """Depth-first walk from the new probe; a path back to it is a cycle."""
        graph = {pid: p.depends_on for pid, p in self._probes.items()}
        graph[probe.id] = probe.depends_on

        def walk(node: str, path: List[str]) -> Optional[List[str]]:
            for dep in graph.get(node, ()):
                if dep == probe.id:
                    return path + [dep]
                if dep in path:
                    continue
                found = walk(dep, path + [dep])
                if found:
                    return found
            return None

        return walk(probe.id, [probe.id])

    def __len__(self) -> int:
        return len(self._probes)

    def __contains__(self, probe_id: object) -> bool:
        return probe_id in self._probes

    def __iter__(self) -> Iterator[Probe]:
        return iter(list(self._probes.values()))

    def get(self, probe_id: str) -> Optional[Probe]:
        return self._probes.get(probe_id)

    def probes_for(self, context: Context) -> Iterator[Probe]:
        """
        Lazily yield the applicable probes in declaration order, expanding fan-out
        families into one probe per target. Restartable: every call re-evaluates.
        """
        for p in list(self._probes.values()):
            if not p.applies_to(context):
                continue
            for concrete in p.expand(context):
                yield concrete
