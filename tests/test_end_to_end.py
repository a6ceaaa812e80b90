"""
End-to-end pipeline test over in-memory fakes.

Source adapter -> repository reconciler (full metadata) -> annotation queue
-> annotation batch processor -> stored annotation.
"""

from fetchers.sources import AdapterRegistry, DataSourceConfig, SourceAdapter
from models.data_models import RepoReference
from pipeline.annotation_processor import AnnotationProcessor
from pipeline.repo_reconciler import ReconcileDepth, RepoReconciler


class SingleRepoAdapter(SourceAdapter):
    source_id = "src1"
    display_name = "Single repo"

    def fetch(self, source_url):
        return [RepoReference(owner="a", name="b", label="good first issue", source_id="src1")]


def test_discovered_repo_is_annotated(store, gateway, queue, summarizer):
    registry = AdapterRegistry(configs=[DataSourceConfig(id="src1", url="https://example.com/list.json")])
    registry.register(SingleRepoAdapter())
    gateway.languages["a/b"] = {"Go": 100}

    batches = registry.discover()
    stats = RepoReconciler(store, gateway, queue, depth=ReconcileDepth.FULL_METADATA).process_repos(
        batches[0].references
    )

    assert stats.new == 1
    record = store.find_repo_by_owner_name("a", "b")
    assert record.languages_ordered == ["Go"]
    assert record.languages_raw == {"Go": 100}
    assert len(queue.sent) == 1
    assert queue.sent[0].kind == "repo"
    assert queue.sent[0].entity_id == record.id

    result = AnnotationProcessor(store, queue, summarizer).process_batch()

    assert result.stats.processed == 1
    assert result.stats.success == 1
    annotation = store.get_annotation("repo", record.id)
    assert annotation.repo_summary == "test"
    assert summarizer.calls == [("repo", "a/b", ["Go"])]


def test_rerun_without_changes_queues_nothing(store, gateway, queue):
    gateway.languages["a/b"] = {"Go": 100}
    reconciler = RepoReconciler(store, gateway, queue, depth=ReconcileDepth.FULL_METADATA)
    refs = SingleRepoAdapter().fetch("unused")

    reconciler.process_repos(refs)
    stats = reconciler.process_repos(refs)

    assert stats.unchanged == 1
    assert len(queue.sent) == 1
