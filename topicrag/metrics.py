"""Per-operation step trace: which steps ran, how long, with what flags/scores."""

import json
import time
from contextlib import contextmanager
from pathlib import Path


class Metrics:
    """Collects steps for one ingest or answer call.

    The finished report is appended to a JSONL file only when ``path`` is set.
    """

    def __init__(self, operation: str, path=None, clock=time.time):
        self.path = Path(path) if path else None
        self._clock = clock
        self.data = {
            'operation': operation,
            'started_at': clock(),
            'steps': [],
            'flags': {},
            'scores': {},
        }

    def step(self, name, ok=True, extra=None):
        self.data['steps'].append({
            'name': name,
            'ok': ok,
            'elapsed_sec': round(self._clock() - self.data['started_at'], 3),
            'extra': extra or {},
        })

    @contextmanager
    def timed(self, name):
        """Record ``name`` as a step; failed if the block raises (the error still propagates)."""
        extra = {}
        try:
            yield extra
        except Exception as e:
            extra['error'] = str(e)
            self.step(name, False, extra)
            raise
        self.step(name, True, extra)

    def flag(self, key, val):
        self.data['flags'][key] = val

    def score(self, key, val):
        self.data['scores'][key] = val

    def finalize(self):
        self.data['finished_at'] = self._clock()
        self.data['duration_sec'] = round(self.data['finished_at'] - self.data['started_at'], 2)
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open('a', encoding='utf-8') as f:
                f.write(json.dumps(self.data, ensure_ascii=False) + '\n')
        return self.data
