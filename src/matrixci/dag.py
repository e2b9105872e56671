# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import CycleError, DuplicateJobError, SelfReferenceError, UnknownReferenceError
from .model import Job


def build_dag(jobs: Iterable[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must run BEFORE this job)

    Returns (adj, indeg) where adj maps a prerequisite to its dependents.
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DuplicateJobError(f"Duplicate job names found: {dupes}", jobs=dupes)

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs:
            if need == job.name:
                raise SelfReferenceError(job.name)
            if need not in name_set:
                raise UnknownReferenceError(job.name, need, name_set)
            # Edge need -> job.name (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def dependents_of(jobs: Iterable[Job]) -> Dict[str, Set[str]]:
    """Reverse index: job name -> names of jobs that list it in `needs`."""
    adj, _ = build_dag(jobs)
    return adj


def _find_cycle(adj: Dict[str, Set[str]], stuck: List[str]) -> List[str]:
    """Walk edges among stuck nodes until one repeats; return that loop."""
    stuck_set = set(stuck)
    node = stuck[0]
    path: List[str] = []
    index: Dict[str, int] = {}
    while node not in index:
        index[node] = len(path)
        path.append(node)
        # every stuck node has a stuck prerequisite, so follow reverse edges
        node = next(
            p for p in sorted(stuck_set) if node in adj.get(p, set())
        )
    cycle = path[index[node]:]
    cycle.reverse()  # prerequisite -> dependent order
    return cycle


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (batches).
    Each batch can run in parallel; every job's prerequisites are in earlier batches.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(sorted(level))

    if processed != len(indeg):
        stuck = sorted(n for n, d in indeg.items() if d > 0)
        raise CycleError(_find_cycle(adj, stuck), stuck)

    return levels


def resolve(jobs: Iterable[Job]) -> List[List[str]]:
    """Job graph -> ordered batches of job names (raises DefinitionError)."""
    adj, indeg = build_dag(jobs)
    return topo_levels(adj, indeg)
