from itertools import combinations


class StackingGraph:
    """
    Incompatibility graph over program ids. An edge means the two programs may
    never fund the same measure. Edges are symmetric: declaring
    cannot_stack_with on either side is enough.
    """

    def __init__(self, programs):
        self._edges = {}
        for program in programs:
            self._edges.setdefault(program.id, set())
            for other in program.cannot_stack_with:
                self._edges.setdefault(other, set())
                self._edges[program.id].add(other)
                self._edges[other].add(program.id)

    @classmethod
    def from_rules(cls, rules) -> "StackingGraph":
        return cls(rules.programs.values())

    def conflicts(self, program_a: str, program_b: str) -> bool:
        return program_b in self._edges.get(program_a, ())

    def exclusive_with(self, program_id: str) -> frozenset:
        return frozenset(self._edges.get(program_id, ()))

    def conflicting_pairs(self, package) -> list:
        """All (a, b) program pairs in a package that may not be stacked."""
        ids = sorted(package.program_ids())
        return [(a, b) for a, b in combinations(ids, 2) if self.conflicts(a, b)]

    def is_valid_package(self, package) -> bool:
        return not self.conflicting_pairs(package)
