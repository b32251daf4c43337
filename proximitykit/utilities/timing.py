import time
from contextlib import contextmanager


class TimingData:
  """
  Accumulating stopwatch keyed by stage name. Starting a key that already has a result resumes it.
  """

  def __init__(self):
    self._started = {}
    self.results = {}

  def start(self, key: str):
    self._started[key] = time.perf_counter() - self.results.get(key, 0.0)

  def stop(self, key: str) -> float:
    started = self._started.pop(key, None)
    if started is None:
      return -1
    self.results[key] = time.perf_counter() - started
    return self.results[key]

  @contextmanager
  def measure(self, key: str):
    self.start(key)
    try:
      yield self
    finally:
      self.stop(key)

  def get(self, key: str):
    return self.results.get(key)

  def is_running(self, key: str) -> bool:
    return key in self._started

  def merge(self, other: "TimingData"):
    for key, value in other.results.items():
      self.results[key] = self.results.get(key, 0.0) + value

  def print(self) -> str:
    return "\n".join(f"{key}: {value:.2f} seconds" for key, value in self.results.items())
