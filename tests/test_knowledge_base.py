"""
Test insight aggregation into the Knowledge Base
"""

import pytest

from dossier_core.errors import AggregationError, FatalPipelineError
from dossier_core.extractor_base import extract_file
from dossier_core.insight_types import FileInsight, SymbolLocation
from dossier_core.knowledge_base import UNGROUPED, KnowledgeBase, aggregate, classify_domain


class TestClassifyDomain:
    """Domain labels from paths and module paths."""

    def test_parent_directory(self):
        assert classify_domain("app/services/billing.py") == "services"
        assert classify_domain("models/user.rs") == "models"

    def test_source_roots_fall_back_to_module_path(self):
        assert classify_domain("src/Main.java", "com.shop.web") == "web"
        assert classify_domain("src/main.rs") == UNGROUPED

    def test_top_level_file(self):
        assert classify_domain("setup.py") == UNGROUPED

    def test_windows_separators(self):
        assert classify_domain("app\\api\\routes.py") == "api"


class TestAggregate:
    """Aggregation invariants."""

    def test_indices(self, sample_kb):
        assert len(sample_kb) == 5
        assert sample_kb.locate("User") == (SymbolLocation("models/user.rs", 10),)
        assert sample_kb.locate("does_not_exist") == ()
        assert sample_kb.domain_of("app/api/routes.py") == "api"
        assert sample_kb.files_in_domain("models") == ["models/user.rs"]
        assert set(sample_kb.domain_groups) == {"api", "models", "services", "ungrouped", "web"}

    def test_order_independence(self, sample_insights):
        forward = aggregate(sample_insights)
        backward = aggregate(list(reversed(sample_insights)))
        assert dict(forward.symbol_index) == dict(backward.symbol_index)
        assert dict(forward.domain_groups) == dict(backward.domain_groups)
        assert forward.fingerprint() == backward.fingerprint()

    def test_first_seen_file_order(self, sample_insights):
        kb = aggregate(sample_insights)
        assert list(kb.files) == [i.file_path for i in sample_insights]

    def test_name_collisions_keep_every_location(self):
        insights = [
            extract_file("a/one.py", "def helper():\n    pass\n"),
            extract_file("b/two.py", "\n\ndef helper():\n    pass\n"),
        ]
        kb = aggregate(insights)
        assert kb.locate("helper") == (
            SymbolLocation("a/one.py", 1),
            SymbolLocation("b/two.py", 3),
        )
        assert [f.file_path for f in kb.functions_named("helper")] == ["a/one.py", "b/two.py"]

    def test_failed_insights_are_kept_but_not_indexed(self):
        failed = FileInsight.failed("broken/x.py", "python", "not valid UTF-8 at byte 0")
        ok = extract_file("lib/ok.py", "def ok():\n    pass\n")
        kb = aggregate([failed, ok])
        assert "broken/x.py" in kb.files
        assert kb.failed_files() == ["broken/x.py"]
        assert "broken" not in kb.domain_groups
        assert kb.stats()["parse_status"] == {"complete": 1, "failed": 1}

    def test_identical_duplicates_are_ignored(self):
        insight = extract_file("lib/ok.py", "def ok():\n    pass\n")
        kb = aggregate([insight, insight])
        assert len(kb) == 1

    def test_conflicting_duplicates_abort(self):
        first = extract_file("lib/ok.py", "def ok():\n    pass\n")
        second = extract_file("lib/ok.py", "def other():\n    pass\n")
        with pytest.raises(AggregationError) as exc_info:
            aggregate([first, second])
        assert isinstance(exc_info.value, FatalPipelineError)
        assert "lib/ok.py" in str(exc_info.value)

    def test_stats(self, sample_kb):
        stats = sample_kb.stats()
        assert stats["files"] == 5
        assert stats["languages"] == {"java": 1, "python": 2, "rust": 2}
        assert stats["domains"] == 5

    def test_snapshot_is_read_only(self, sample_kb):
        with pytest.raises(TypeError):
            sample_kb.files["new.py"] = None


class TestPersistence:
    """Snapshot save/load."""

    def test_save_and_load(self, sample_kb, temp_dir):
        path = temp_dir / "kb" / "knowledge_base.json"
        sample_kb.save(path)
        loaded = KnowledgeBase.load(path)
        assert loaded.fingerprint() == sample_kb.fingerprint()
        assert dict(loaded.symbol_index) == dict(sample_kb.symbol_index)
