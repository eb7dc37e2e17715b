"""Per-sweep memoization of service resource footprints."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict


@dataclass(frozen=True)
class ServiceUsage:
    """Declared CPU (cores) and RAM (MB) of one service task."""

    cpu: float = 0.0
    ram_mb: int = 0


class ResourceUsageCache:
    """Maps a service name to its declared footprint for one sweep.

    Create a new instance per sweep and drop it afterwards; limits are
    never reused across sweeps.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ServiceUsage] = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, service_name: str) -> bool:
        return service_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(
        self,
        service_name: str,
        loader: Callable[[str], Awaitable[ServiceUsage]],
    ) -> ServiceUsage:
        cached = self._entries.get(service_name)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        usage = await loader(service_name)
        self._entries[service_name] = usage
        return usage
