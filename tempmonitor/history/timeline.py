"""
In-memory timeline of readings shared by the display and the daemon.
"""

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional, Tuple

from ..models import Reading


class Timeline:
    """
    Ordered readings, seeded from history and extended by the live pipeline.

    Insertion order is kept as-is. An append older than the current last entry
    is still stored but sets ``out_of_order``; callers that need a global sort
    should use ``sorted_readings()`` in that case. With ``max_points`` set the
    oldest entries are dropped on append.
    """

    def __init__(self, readings: Iterable[Reading] = (), max_points: Optional[int] = None):
        self.max_points = max_points
        self._readings: Deque[Reading] = deque(maxlen=max_points)
        self.out_of_order = False
        self.extend(readings)

    def append(self, reading: Reading) -> bool:
        """
        Append a reading.

        Returns:
            bool: True if the reading kept the timeline in order
        """
        in_order = not self._readings or reading.timestamp >= self._readings[-1].timestamp
        if not in_order:
            self.out_of_order = True
        self._readings.append(reading)
        return in_order

    def extend(self, readings: Iterable[Reading]):
        for reading in readings:
            self.append(reading)

    def sorted_readings(self) -> List[Reading]:
        if not self.out_of_order:
            return list(self._readings)
        return sorted(self._readings, key=lambda reading: reading.timestamp)

    @property
    def last(self) -> Optional[Reading]:
        return self._readings[-1] if self._readings else None

    def temperature_range(self) -> Optional[Tuple[float, float]]:
        if not self._readings:
            return None
        temperatures = [reading.temperature_c for reading in self._readings]
        return min(temperatures), max(temperatures)

    def humidity_range(self) -> Optional[Tuple[int, int]]:
        if not self._readings:
            return None
        humidities = [reading.humidity_pct for reading in self._readings]
        return min(humidities), max(humidities)

    def __len__(self) -> int:
        return len(self._readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self._readings)
