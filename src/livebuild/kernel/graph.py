"""Build the dependency graph of derivation rules."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Set, Tuple

from .kinds import ArtifactKind, InputKind, Node, node_key

Derive = Callable[[Mapping[Node, Any]], Any]
EffectFn = Callable[[Any, Mapping[Node, Any]], None]


class KernelValidationError(Exception):
    """Base exception for graph validation errors."""
    pass


class MissingDependenciesError(KernelValidationError):
    """Raised when dependencies are referenced but not defined."""
    def __init__(self, missing: set):
        self.missing = missing
        missing_str = ", ".join(sorted(node_key(m) for m in missing))
        super().__init__(f"Dependencies referenced but not defined: {missing_str}")


class DuplicateRuleError(KernelValidationError):
    """Raised when two rules produce the same artifact."""
    def __init__(self, target: ArtifactKind):
        self.target = target
        super().__init__(f"More than one rule derives {target.value}")


class CycleDetectedError(KernelValidationError):
    """Raised when a cycle is detected in the dependency graph."""
    def __init__(self, cycle: List[Node]):
        self.cycle = cycle
        cycle_ids = [node_key(n) for n in cycle]
        cycle_id_str = " -> ".join(cycle_ids) + f" -> {cycle_ids[0]}"
        super().__init__(f"Cycle detected in dependency graph:\n  Cycle: {cycle_id_str}")


@dataclass(frozen=True)
class Effect:
    """An effectful publish step run after its artifact is stored.

    ``run`` receives the freshly derived value and the dependency values it
    was derived from.
    """
    name: str
    run: EffectFn


@dataclass(frozen=True)
class DerivationRule:
    """One row of the static derivation table.

    ``derive`` receives a mapping from each dependency to its current value
    (raw bytes for watched inputs, stored values for artifacts) and returns
    the target value or raises.
    """
    target: ArtifactKind
    dependencies: Tuple[Node, ...]
    derive: Derive
    effects: Tuple[Effect, ...] = field(default=())

    @property
    def step(self) -> str:
        return getattr(self.derive, "__name__", self.target.value)


class ArtifactGraph:
    """Dependency graph over watched inputs and derived artifacts."""

    def __init__(self, rules: Iterable[DerivationRule]):
        self.rules: Dict[ArtifactKind, DerivationRule] = {}
        self.nodes: Set[Node] = set(InputKind)
        self.edges: Dict[Node, Set[Node]] = defaultdict(set)  # node -> set of dependencies
        self.reverse_edges: Dict[Node, Set[Node]] = defaultdict(set)  # dependency -> set of nodes that depend on it
        self._levels: List[List[ArtifactKind]] = []
        self._build(rules)

    def _build(self, rules: Iterable[DerivationRule]) -> None:
        for rule in rules:
            if rule.target in self.rules:
                raise DuplicateRuleError(rule.target)
            self.rules[rule.target] = rule
            self.nodes.add(rule.target)
            self.edges[rule.target] = set(rule.dependencies)
            for dep in rule.dependencies:
                self.reverse_edges[dep].add(rule.target)

        all_deps = set()
        for deps in self.edges.values():
            all_deps.update(deps)
        missing = all_deps - self.nodes
        if missing:
            raise MissingDependenciesError(missing)

        cycle = self._detect_cycle()
        if cycle:
            raise CycleDetectedError(cycle)

        self._levels = self._compute_levels()

    def _detect_cycle(self) -> List[Node]:
        """Detect a cycle using DFS; returns the cycle path or an empty list."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {node: WHITE for node in self.nodes}
        path: List[Node] = []

        def dfs(node: Node) -> List[Node]:
            color[node] = GRAY
            path.append(node)
            for dependent in sorted(self.get_dependents(node), key=node_key):
                if color[dependent] == GRAY:
                    return path[path.index(dependent):]
                if color[dependent] == WHITE:
                    found = dfs(dependent)
                    if found:
                        return found
            color[node] = BLACK
            path.pop()
            return []

        for node in sorted(self.nodes, key=node_key):
            if color[node] == WHITE:
                found = dfs(node)
                if found:
                    return found
        return []

    def _compute_levels(self) -> List[List[ArtifactKind]]:
        """Group artifacts by longest distance from a watched input.

        Every artifact sits in a later level than all of its dependencies;
        artifacts sharing a level have no dependency relationship.
        """
        depth: Dict[Node, int] = {node: 0 for node in InputKind}

        def resolve(node: Node) -> int:
            if node not in depth:
                depth[node] = 1 + max((resolve(dep) for dep in self.edges[node]), default=0)
            return depth[node]

        levels: Dict[int, List[ArtifactKind]] = defaultdict(list)
        for target in self.rules:
            levels[resolve(target)].append(target)
        return [sorted(levels[i], key=node_key) for i in sorted(levels)]

    def get_dependencies(self, node: Node) -> Set[Node]:
        """Get direct dependencies of a node."""
        return self.edges.get(node, set())

    def get_dependents(self, node: Node) -> Set[Node]:
        """Get nodes that depend on this node (reverse edges)."""
        return self.reverse_edges.get(node, set())

    def get_transitive_dependencies(self, node: Node) -> Set[Node]:
        """Get all transitive dependencies (recursive)."""
        visited = set()
        stack = [node]

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for dep in self.get_dependencies(current):
                if dep not in visited:
                    stack.append(dep)

        visited.discard(node)  # Don't include the node itself
        return visited

    def get_transitive_dependents(self, node: Node) -> Set[Node]:
        """Get all transitive dependents (what depends on this node, recursively)."""
        visited = set()
        stack = [node]

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for dependent in self.get_dependents(current):
                if dependent not in visited:
                    stack.append(dependent)

        visited.discard(node)  # Don't include the node itself
        return visited

    def levels(self) -> List[List[ArtifactKind]]:
        """Artifacts grouped into dependency levels, earliest first."""
        return [list(level) for level in self._levels]

    def topological_order(self) -> List[ArtifactKind]:
        """Fixed topological order of all artifacts."""
        return [kind for level in self._levels for kind in level]

    def schedule(self, pending: Iterable[Node]) -> List[List[ArtifactKind]]:
        """Restrict the level plan to ``pending`` artifacts, dropping empty levels."""
        wanted = set(pending)
        plan = []
        for level in self._levels:
            selected = [kind for kind in level if kind in wanted]
            if selected:
                plan.append(selected)
        return plan
