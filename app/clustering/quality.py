"""
Agreement between an automatic clustering and a researcher's manual one.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from sklearn.metrics import silhouette_score

from app.clustering.models import Point


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def f_score(precision: float, recall: float, beta: float) -> float:
    """F-beta measure, 0 when precision and recall are both 0."""
    if precision + recall == 0:
        return 0.0
    beta2 = beta * beta
    return (1 + beta2) * precision * recall / (beta2 * precision + recall)


@dataclass
class ClusterMeasures:
    """Confusion counts and derived measures for one cluster (or the total)."""

    cluster_number: Optional[int]
    true_positive: int = 0
    false_positive: int = 0
    false_negative: int = 0

    @property
    def precision(self) -> float:
        return _ratio(self.true_positive, self.true_positive + self.false_positive)

    @property
    def recall(self) -> float:
        return _ratio(self.true_positive, self.true_positive + self.false_negative)

    @property
    def f1(self) -> float:
        return f_score(self.precision, self.recall, 1.0)

    @property
    def f05(self) -> float:
        return f_score(self.precision, self.recall, 0.5)

    @property
    def f2(self) -> float:
        return f_score(self.precision, self.recall, 2.0)

    def to_dict(self, digits: int = 3) -> Dict:
        return {
            "cluster_number": self.cluster_number,
            "true_positive": self.true_positive,
            "false_positive": self.false_positive,
            "false_negative": self.false_negative,
            "precision": round(self.precision, digits),
            "recall": round(self.recall, digits),
            "f1": round(self.f1, digits),
            "f05": round(self.f05, digits),
            "f2": round(self.f2, digits),
        }


@dataclass
class QualityReport:
    clusters: List[ClusterMeasures] = field(default_factory=list)
    total: ClusterMeasures = field(default_factory=lambda: ClusterMeasures(cluster_number=None))

    def to_dict(self, digits: int = 3) -> Dict:
        return {
            "clusters": [measures.to_dict(digits) for measures in self.clusters],
            "total": self.total.to_dict(digits),
        }


def cluster_measures(automatic: Dict[str, int], manual: Dict[str, int]) -> QualityReport:
    """
    Compare automatic and manual cluster assignments.

    For cluster i a student is a true positive when both put it in i, a false
    positive when only the automatic clustering does and a false negative when
    only the manual one does. Totals are computed from summed counts.
    """
    numbers = sorted(set(automatic.values()) | set(manual.values()))
    per_cluster = {number: ClusterMeasures(cluster_number=number) for number in numbers}

    for student_id in set(automatic) | set(manual):
        auto_number = automatic.get(student_id)
        manual_number = manual.get(student_id)
        if auto_number is not None and auto_number == manual_number:
            per_cluster[auto_number].true_positive += 1
            continue
        if auto_number is not None:
            per_cluster[auto_number].false_positive += 1
        if manual_number is not None:
            per_cluster[manual_number].false_negative += 1

    total = ClusterMeasures(
        cluster_number=None,
        true_positive=sum(m.true_positive for m in per_cluster.values()),
        false_positive=sum(m.false_positive for m in per_cluster.values()),
        false_negative=sum(m.false_negative for m in per_cluster.values()),
    )
    return QualityReport(clusters=[per_cluster[n] for n in numbers], total=total)


def silhouette(points: Dict[str, Point], assignments: Dict[str, int]) -> Optional[float]:
    """Silhouette score of an assignment, None when it is undefined."""
    students = [s for s in assignments if s in points]
    labels = [assignments[s] for s in students]
    distinct = len(set(labels))
    if distinct < 2 or distinct >= len(students):
        return None

    matrix = np.array([[points[s].x, points[s].y] for s in students], dtype=float)
    return float(silhouette_score(matrix, labels))
