"""
Example usage of the clustering core without a database.
"""
import os
import sys
import logging

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.clustering.aggregator import CentroidAggregator
from app.clustering.context import ClusteringContext
from app.clustering.kmeans import KMeansEngine
from app.clustering.layout import normalize_layout
from app.clustering.models import AccessEvent, GraphConfiguration, ModuleNode, Point
from app.clustering.quality import cluster_measures
from app.clustering.reconciler import IncrementalReconciler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def example_centroids():
    """Example: Aggregate clicks into student centroids."""
    print("\n" + "="*60)
    print("EXAMPLE: Student Centroids")
    print("="*60)

    layout = normalize_layout({
        1: ModuleNode(100, 100),
        2: ModuleNode(300, 100),
        3: ModuleNode(300, 300),
        4: ModuleNode(100, 300, visible=False),
    })
    configuration = GraphConfiguration("teacher", 1, layout.nodes, layout.scale, layout.center)
    events = [
        AccessEvent("alice", 1, 10),
        AccessEvent("alice", 2, 20),
        AccessEvent("alice", 3, 30),
        AccessEvent("bob", 4, 15),
        AccessEvent("bob", 3, 25),
    ]

    aggregator = CentroidAggregator([configuration])
    geometric = aggregator.accumulate(events)[configuration.key]
    decomposed = aggregator.decompose(events)[configuration.key]
    for student_id, centroid in sorted(geometric.items()):
        print(f"  {student_id}: geometric={centroid.point} decomposed={decomposed[student_id]}")


def example_clustering():
    """Example: Cluster, reconcile and compare with a manual clustering."""
    print("\n" + "="*60)
    print("EXAMPLE: K-Means and Reconciliation")
    print("="*60)

    points = {"s1": Point(0, 0), "s2": Point(1, 0), "s3": Point(10, 10), "s4": Point(11, 10)}
    context = ClusteringContext.create(seed=7)
    state = KMeansEngine(context).run(points, k=2)
    final = state.current
    print(f"Converged after {len(state.iterations)} iterations")
    for number, members in final.members().items():
        print(f"  cluster {number} ({state.colours[number]}): {final.centroids[number]} {sorted(members)}")

    moved = dict(points, s2=Point(9, 9))
    result = IncrementalReconciler(context).reconcile(final, moved, moved.values())
    print(f"Reconciliation added {len(result.iterations)} iterations, converged={result.converged}")

    manual = {"s1": 0, "s2": 0, "s4": 0}
    automatic = {"s1": 0, "s2": 0, "s3": 0}
    print(f"Quality: {cluster_measures(automatic, manual).total.to_dict()}")


if __name__ == "__main__":
    example_centroids()
    example_clustering()
