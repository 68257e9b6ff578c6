"""
Unit tests for knowledge capitalization.

Tests quality scoring, fine-tuning exports, gap analysis and cleanup.
"""

import json
import os
import tempfile
from datetime import datetime, timedelta

import pytest

from ai_smart_router.core.capitalizer import (
    ExportFormat,
    KnowledgeCapitalizer,
    compute_quality,
    generate_recommendations,
)
from ai_smart_router.storage.knowledge import (
    get_knowledge_entry,
    insert_cache_miss,
    insert_knowledge_entry,
)
from ai_smart_router.storage.models import CacheEntry, CacheMiss
from ai_smart_router.storage.repository import initialize_schema


def _entry(entry_id, category="code", quality=0.5, use_count=0, answer="x" * 500,
           model="gpt-4o-mini", created_at=None):
    return CacheEntry(
        id=entry_id,
        question=f"How do I do {entry_id}?",
        answer=answer,
        embedding=[1.0, 0.0],
        category=category,
        quality_score=quality,
        use_count=use_count,
        created_at=created_at or datetime.now(),
        original_model=model,
        original_cost=0.001
    )


class TestComputeQuality:
    """Test the quality formula."""

    def test_premium_answer(self):
        """Test a reused, well-sized answer from a premium model."""
        entry = _entry("a", use_count=50, model="claude-opus-4-5")
        # fresh = 0.5*0.6 + 1.0*0.2 + 1.0*0.2 = 0.7; 0.7*0.7 + 0.5*0.3
        assert compute_quality(entry) == pytest.approx(0.64)

    def test_short_answer_unknown_model(self):
        """Test a short, unused answer with no model."""
        entry = _entry("b", answer="ok", model=None)
        # fresh = 0 + 0.5*0.2 + 0.6*0.2 = 0.22; 0.22*0.7 + 0.5*0.3
        assert compute_quality(entry) == pytest.approx(0.304)

    def test_reuse_saturates(self):
        """Test that reuse beyond the saturation point stops counting."""
        heavy = compute_quality(_entry("c", use_count=100, quality=1.0))
        heavier = compute_quality(_entry("d", use_count=10_000, quality=1.0))
        assert heavy == pytest.approx(heavier)
        assert heavy <= 1.0

    def test_score_in_range(self):
        """Test that scores stay in [0, 1]."""
        for quality in (0.0, 1.0):
            for use_count in (0, 1000):
                score = compute_quality(_entry("e", quality=quality, use_count=use_count))
                assert 0.0 <= score <= 1.0


class TestKnowledgeCapitalizer:
    """Test batch knowledge jobs."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.capitalizer = KnowledgeCapitalizer(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_update_quality_score(self):
        """Test that the recomputed score is persisted."""
        insert_knowledge_entry(_entry("a", use_count=50, model="claude-opus-4-5"),
                               self.db_path)
        score = self.capitalizer.update_quality_score("a")

        assert score == pytest.approx(0.64)
        assert get_knowledge_entry("a", self.db_path).quality_score == pytest.approx(0.64)

    def test_update_missing_entry(self):
        """Test rescoring an unknown entry."""
        assert self.capitalizer.update_quality_score("missing") is None

    def test_rescore_all(self):
        """Test that every entry is rescored."""
        insert_knowledge_entry(_entry("a"), self.db_path)
        insert_knowledge_entry(_entry("b"), self.db_path)
        assert self.capitalizer.rescore_all() == 2

    def test_export_openai(self):
        """Test the chat-messages export format."""
        insert_knowledge_entry(_entry("good", quality=0.8, use_count=5), self.db_path)
        insert_knowledge_entry(_entry("poor", quality=0.4, use_count=10), self.db_path)
        insert_knowledge_entry(_entry("unused", quality=0.9, use_count=1), self.db_path)

        export = self.capitalizer.export_for_fine_tuning()

        lines = export.data.splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert [m["role"] for m in record["messages"]] == ["system", "user", "assistant"]
        assert record["messages"][1]["content"] == "How do I do good?"
        assert export.format == ExportFormat.OPENAI
        assert export.stats["total_entries"] == 1
        assert export.stats["avg_quality"] == pytest.approx(0.8)
        assert export.stats["by_category"] == {"code": 1}
        assert export.filename.startswith("finetune_openai_")

    def test_export_anthropic(self):
        """Test the prompt/completion export format."""
        insert_knowledge_entry(_entry("good", quality=0.8, use_count=5), self.db_path)
        record = json.loads(
            self.capitalizer.export_for_fine_tuning(export_format="anthropic").data
        )
        assert "Human: How do I do good?" in record["prompt"]
        assert record["prompt"].endswith("Assistant:")
        assert record["completion"].startswith(" ")

    def test_export_jsonl(self):
        """Test the generic export format with metadata."""
        insert_knowledge_entry(_entry("good", quality=0.8, use_count=5), self.db_path)
        record = json.loads(
            self.capitalizer.export_for_fine_tuning(export_format="jsonl").data
        )
        assert record["input"] == "How do I do good?"
        assert record["metadata"]["category"] == "code"
        assert record["metadata"]["use_count"] == 5

    def test_export_category_filter(self):
        """Test restricting the export to some categories."""
        insert_knowledge_entry(_entry("a", category="code", quality=0.8, use_count=5),
                               self.db_path)
        insert_knowledge_entry(_entry("b", category="simple", quality=0.8, use_count=5),
                               self.db_path)
        export = self.capitalizer.export_for_fine_tuning(categories=["simple"])
        assert export.stats["by_category"] == {"simple": 1}

    def test_export_empty(self):
        """Test an export with nothing qualifying."""
        export = self.capitalizer.export_for_fine_tuning()
        assert export.data == ""
        assert export.stats["total_entries"] == 0
        assert export.stats["avg_quality"] == 0.0

    def test_export_unknown_format(self):
        """Test that unsupported formats are rejected."""
        with pytest.raises(ValueError, match="export format"):
            self.capitalizer.export_for_fine_tuning(export_format="csv")

    def test_analyze_gaps(self):
        """Test recommendations and recent misses."""
        insert_knowledge_entry(_entry("a", category="code", quality=0.3), self.db_path)
        insert_knowledge_entry(_entry("b", category="code", quality=0.4), self.db_path)
        insert_cache_miss(CacheMiss("How do I reset my password?", 0.6, datetime.now()),
                          self.db_path)

        report = self.capitalizer.analyze_gaps()

        assert report.category_stats[0]["category"] == "code"
        assert report.recent_misses[0]["question"] == "How do I reset my password?"
        assert {r.type for r in report.recommendations} == {"improve_quality", "add_content"}

    def test_get_metrics(self):
        """Test the knowledge base dashboard."""
        insert_knowledge_entry(_entry("a", use_count=3), self.db_path)
        insert_knowledge_entry(_entry("b", use_count=7), self.db_path)

        metrics = self.capitalizer.get_metrics()
        assert metrics["total_entries"] == 2
        assert metrics["total_reuses"] == 10
        assert metrics["estimated_savings"] == pytest.approx(0.01)
        assert [e.id for e in metrics["top_entries"]] == ["b", "a"]
        assert metrics["ready_for_fine_tuning"] is False

    def test_cleanup_dry_run_and_apply(self):
        """Test that only old, poor, unused entries are removed."""
        now = datetime(2024, 6, 1)
        old = now - timedelta(days=120)
        insert_knowledge_entry(_entry("stale", quality=0.1, created_at=old), self.db_path)
        insert_knowledge_entry(_entry("popular", quality=0.1, use_count=5, created_at=old),
                               self.db_path)
        insert_knowledge_entry(_entry("recent", quality=0.1,
                                      created_at=now - timedelta(days=10)),
                               self.db_path)

        preview = self.capitalizer.cleanup(now=now)
        assert preview.dry_run is True
        assert preview.matched == 1
        assert preview.deleted == 0
        assert get_knowledge_entry("stale", self.db_path) is not None

        result = self.capitalizer.cleanup(dry_run=False, now=now)
        assert result.deleted == 1
        assert get_knowledge_entry("stale", self.db_path) is None
        assert get_knowledge_entry("popular", self.db_path) is not None
        assert get_knowledge_entry("recent", self.db_path) is not None


class TestRecommendations:
    """Test gap recommendations."""

    def test_healthy_category(self):
        """Test that a large, good category needs nothing."""
        stats = [{"category": "code", "total_entries": 50, "avg_use": 4.0,
                  "avg_quality": 0.8}]
        assert generate_recommendations(stats) == []
