"""Data operations for Protean."""

from protean.data.filters import FilterCompiler
from protean.data.instances import InstanceStore
from protean.data.options import OptionResolver, TitleCache
from protean.data.relations import RelationStore

__all__ = [
    "FilterCompiler",
    "InstanceStore",
    "OptionResolver",
    "RelationStore",
    "TitleCache",
]
