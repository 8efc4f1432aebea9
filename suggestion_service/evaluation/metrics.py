"""
Confusion matrix and label-level metrics.
"""

from collections import Counter
from typing import Dict, Iterable, Optional, Set, Tuple


class ConfusionMatrix:
    """Counts of (gold, predicted) label pairs.

    Pairs where both labels equal ``ignore_label`` (e.g. an outside tag) are
    counted but excluded from the metrics.
    """

    def __init__(self, ignore_label: Optional[str] = None):
        self.ignore_label = ignore_label
        self._counts: Counter = Counter()

    def add(self, gold: Optional[str], predicted: Optional[str], count: int = 1) -> None:
        self._counts[(gold, predicted)] += count

    def add_all(self, pairs: Iterable[Tuple[Optional[str], Optional[str]]]) -> None:
        for gold, predicted in pairs:
            self.add(gold, predicted)

    def as_dict(self) -> Dict[Tuple[Optional[str], Optional[str]], int]:
        return dict(self._counts)

    def _relevant(self):
        for (gold, predicted), count in self._counts.items():
            if self.ignore_label is not None and gold == self.ignore_label and predicted == self.ignore_label:
                continue
            yield gold, predicted, count

    @property
    def labels(self) -> Set[str]:
        labels = set()
        for gold, predicted, _ in self._relevant():
            for label in (gold, predicted):
                if label is not None and label != self.ignore_label:
                    labels.add(label)
        return labels

    @property
    def total(self) -> int:
        return sum(count for _, _, count in self._relevant())

    def accuracy(self) -> float:
        total = self.total
        if total == 0:
            return 0.0
        correct = sum(count for gold, predicted, count in self._relevant() if gold == predicted)
        return correct / total

    def _per_label(self, label: str) -> Tuple[float, float, float]:
        tp = fp = fn = 0
        for gold, predicted, count in self._relevant():
            if gold == label and predicted == label:
                tp += count
            elif predicted == label:
                fp += count
            elif gold == label:
                fn += count
        precision = tp / (tp + fp) if tp + fp else 0.0
        recall = tp / (tp + fn) if tp + fn else 0.0
        f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
        return precision, recall, f1

    def metrics(self) -> Dict[str, float]:
        """Accuracy plus macro-averaged precision, recall and F1."""
        labels = sorted(self.labels)
        if labels:
            per_label = [self._per_label(label) for label in labels]
            precision = sum(p for p, _, _ in per_label) / len(labels)
            recall = sum(r for _, r, _ in per_label) / len(labels)
            f1 = sum(f for _, _, f in per_label) / len(labels)
        else:
            precision = recall = f1 = 0.0
        return {
            "accuracy": self.accuracy(),
            "precision": precision,
            "recall": recall,
            "f1": f1,
        }
