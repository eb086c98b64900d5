"""
Reference inference collaborators.

The pipeline only needs an object with an `input_dim` attribute and a
`predict(vector)` method. These k-nearest-neighbour models (scikit-learn)
fill that role for classification and regression so sessions can be
run end to end; any other model with the same surface can replace them.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor

from .errors import DimensionMismatchError
from .schema import PredictionRecord, RegressionResult

logger = logging.getLogger(__name__)


class _KnnBase:
    """Example storage, fixed input dimensionality and lazy fitting."""

    def __init__(self, k: int = 3):
        self.k = k
        self.input_dim: Optional[int] = None
        self._X: List[np.ndarray] = []
        self._y: List[Any] = []
        self._model = None

    def _check_dim(self, vector) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float32).ravel()
        if self.input_dim is not None and vector.shape[0] != self.input_dim:
            raise DimensionMismatchError(self.input_dim, vector.shape[0])
        return vector

    def _store(self, vector) -> np.ndarray:
        vector = self._check_dim(vector)
        if self.input_dim is None:
            self.input_dim = vector.shape[0]
        self._X.append(vector)
        self._model = None
        return vector

    def remove_example(self, index: int) -> bool:
        """Drop one stored example; False if index is out of range."""
        if index < 0 or index >= len(self._X):
            return False
        del self._X[index]
        del self._y[index]
        self._model = None
        if not self._X:
            self.clear()
        return True

    @property
    def num_examples(self) -> int:
        return len(self._X)

    @property
    def is_trained(self) -> bool:
        return bool(self._X)

    def clear(self):
        self.input_dim = None
        self._X = []
        self._model = None

    def save(self, path: str):
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f)

    @classmethod
    def load(cls, path: str):
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))


class KnnClassifier(_KnnBase):
    """k-NN classifier; confidences are neighbour vote fractions."""

    def __init__(self, k: int = 3):
        super().__init__(k)
        self._y: List[str] = []

    def add_example(self, vector: Sequence[float], label: str):
        self._store(vector)
        self._y.append(str(label))

    @property
    def classes(self) -> List[str]:
        return sorted(set(self._y))

    def class_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for label in self._y:
            counts[label] = counts.get(label, 0) + 1
        return counts

    def rename_class(self, old: str, new: str) -> int:
        """Relabel every example of a class. Returns the number relabelled."""
        old, new = str(old), str(new)
        count = 0
        for i, label in enumerate(self._y):
            if label == old:
                self._y[i] = new
                count += 1
        if count:
            self._model = None
        return count

    def _fit(self):
        n_neighbors = min(self.k, len(self._X))
        self._model = KNeighborsClassifier(n_neighbors=n_neighbors)
        self._model.fit(np.stack(self._X), np.array(self._y))
        logger.debug("fitted k-NN classifier: %d examples, %d classes, k=%d",
                     len(self._X), len(self.classes), n_neighbors)

    def predict(self, vector: Sequence[float]) -> Optional[PredictionRecord]:
        """
        Raises:
            DimensionMismatchError: vector length differs from training data
        """
        if not self.is_trained:
            return None
        vector = self._check_dim(vector)
        if self._model is None:
            self._fit()
        proba = self._model.predict_proba(vector.reshape(1, -1))[0]
        confidences = {str(cls): float(p) for cls, p in zip(self._model.classes_, proba)}
        return PredictionRecord.from_confidences(confidences)

    def clear(self):
        super().clear()
        self._y = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'classification',
            'k': self.k,
            'examples': [{'features': x.tolist(), 'label': y}
                         for x, y in zip(self._X, self._y)],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'KnnClassifier':
        if d.get('type') != 'classification':
            raise ValueError(f"Not a classification dataset: type={d.get('type')!r}")
        model = cls(k=d.get('k', 3))
        for example in d.get('examples', []):
            model.add_example(example['features'], example['label'])
        return model


class KnnRegressor(_KnnBase):
    """Distance-weighted k-NN regressor over named outputs."""

    def __init__(self, k: int = 3):
        super().__init__(k)
        self.output_ids: Optional[List[str]] = None
        self._y: List[List[float]] = []

    def add_example(self, vector: Sequence[float], targets: Dict[str, float]):
        if self.output_ids is None:
            self.output_ids = sorted(targets)
        elif sorted(targets) != self.output_ids:
            raise ValueError(f"expected outputs {self.output_ids}, got {sorted(targets)}")
        self._store(vector)
        self._y.append([float(targets[out_id]) for out_id in self.output_ids])

    def _fit(self):
        n_neighbors = min(self.k, len(self._X))
        self._model = KNeighborsRegressor(n_neighbors=n_neighbors, weights='distance')
        self._model.fit(np.stack(self._X), np.array(self._y))

    def predict(self, vector: Sequence[float]) -> Optional[RegressionResult]:
        if not self.is_trained:
            return None
        vector = self._check_dim(vector)
        if self._model is None:
            self._fit()
        values = self._model.predict(vector.reshape(1, -1))[0]
        return RegressionResult({out_id: float(v) for out_id, v in zip(self.output_ids, values)})

    def clear(self):
        super().clear()
        self.output_ids = None
        self._y = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'regression',
            'k': self.k,
            'output_ids': self.output_ids,
            'examples': [{'features': x.tolist(), 'targets': dict(zip(self.output_ids, y))}
                         for x, y in zip(self._X, self._y)],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'KnnRegressor':
        if d.get('type') != 'regression':
            raise ValueError(f"Not a regression dataset: type={d.get('type')!r}")
        model = cls(k=d.get('k', 3))
        for example in d.get('examples', []):
            model.add_example(example['features'], example['targets'])
        return model
