"""Tests for the Repository pattern."""

from __future__ import annotations

import math
import sqlite3
import threading

import pytest

from rulecheck.db.models import (
    CodeExample,
    DocumentReference,
    ExampleReference,
    KnowledgeDocument,
    ValidationRecord,
)
from rulecheck.db.query import CategoryEquals, ContainsAny, MetadataEquals
from rulecheck.db.vectors import DOCUMENT_VEC_TABLE, EXAMPLE_VEC_TABLE

QUERY = [1.0, 0.0, 0.0, 0.0]


def _vec(similarity: float) -> list[float]:
    """Unit vector whose cosine similarity to QUERY is *similarity*."""
    return [similarity, math.sqrt(1.0 - similarity**2), 0.0, 0.0]


def _doc(id="d1", title="Rule basics", content="Every rule must define rule().", **kw):
    return KnowledgeDocument(id=id, title=title, content=content, **kw)


def _example(id="e1", title="Okta login", code="def rule(event):\n    return True", score=80, **kw):
    return CodeExample(id=id, title=title, code_content=code, quality_score=score, **kw)


def _record(id="v1"):
    return ValidationRecord(
        id=id,
        code_content="def rule(event): return True",
        syntax_is_valid=True,
        rule_compliance_score=85,
        code_quality_score=70,
        code_quality_feedback="Readable.",
        detailed_analysis="Looks fine.",
        total_duration_ms=1200,
        model_used="anthropic/claude-3-5-sonnet",
        syntax_errors=[],
        rule_findings=["uses deep_get"],
        rule_suggestions=["add severity()"],
    )


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------

def test_add_and_get_document(repo):
    doc = _doc(section="Panther Detection Rules", metadata='{"heading_level": 1}')
    rowid = repo.add_document(doc)
    assert rowid == doc.rowid
    result = repo.get_document("d1")
    assert result is not None
    assert result.title == "Rule basics"
    assert result.section == "Panther Detection Rules"
    assert result.metadata_dict == {"heading_level": 1}
    assert result.created_at is not None


def test_get_document_not_found(repo):
    assert repo.get_document("missing") is None


def test_add_document_rejects_unknown_type(repo):
    with pytest.raises(ValueError, match="document_type"):
        repo.add_document(_doc(document_type="tutorial"))


def test_add_document_with_embedding_is_counted(repo):
    repo.add_document(_doc(), _vec(0.9))
    assert repo.count_embedded(DOCUMENT_VEC_TABLE) == 1


def test_add_document_wrong_dimensions_raises(repo):
    with pytest.raises(ValueError, match="expected 4"):
        repo.add_document(_doc(), [0.1, 0.2])
    assert repo.count_documents() == 0


def test_list_documents_filters_by_type(repo):
    repo.add_document(_doc(id="d1"))
    repo.add_document(_doc(id="d2", document_type="best-practice"))
    assert [d.id for d in repo.list_documents()] == ["d1", "d2"]
    assert [d.id for d in repo.list_documents("best-practice")] == ["d2"]
    assert len(repo.list_documents(limit=1)) == 1


def test_update_document(repo):
    repo.add_document(_doc())
    doc = repo.get_document("d1")
    doc.title = "Renamed"
    doc.document_type = "best-practice"
    repo.update_document(doc)
    assert repo.get_document("d1").title == "Renamed"
    assert repo.get_document("d1").document_type == "best-practice"


def test_update_document_missing_raises(repo):
    with pytest.raises(KeyError):
        repo.update_document(_doc(id="ghost"))


def test_set_document_embedding_replaces(repo):
    repo.add_document(_doc(), _vec(0.2))
    repo.set_document_embedding("d1", _vec(0.95))
    assert repo.count_embedded(DOCUMENT_VEC_TABLE) == 1
    hits = repo.nearest_documents(QUERY, min_similarity=0.9, limit=5)
    assert [d.id for d, _ in hits] == ["d1"]


def test_set_document_embedding_missing_raises(repo):
    with pytest.raises(KeyError):
        repo.set_document_embedding("ghost", _vec(0.5))


def test_delete_document_removes_embedding(repo):
    repo.add_document(_doc(), _vec(0.9))
    assert repo.delete_document("d1") is True
    assert repo.get_document("d1") is None
    assert repo.count_embedded(DOCUMENT_VEC_TABLE) == 0


def test_delete_document_missing_returns_false(repo):
    assert repo.delete_document("ghost") is False


# ------------------------------------------------------------------
# Examples
# ------------------------------------------------------------------

def test_add_and_get_example(repo):
    repo.add_example(_example(category="okta", tags=["auth", "login"]), _vec(0.5))
    result = repo.get_example("e1")
    assert result.quality_score == 80
    assert result.category == "okta"
    assert result.tags == ["auth", "login"]
    assert repo.count_embedded(EXAMPLE_VEC_TABLE) == 1


@pytest.mark.parametrize("score", [-1, 101, 50.5, True])
def test_add_example_rejects_bad_quality_score(repo, score):
    with pytest.raises(ValueError, match="quality_score"):
        repo.add_example(_example(score=score))


def test_list_examples_by_category(repo):
    repo.add_example(_example(id="e1", category="okta"))
    repo.add_example(_example(id="e2", category="aws"))
    assert [e.id for e in repo.list_examples("aws")] == ["e2"]
    assert len(repo.list_examples()) == 2


def test_update_example(repo):
    repo.add_example(_example())
    ex = repo.get_example("e1")
    ex.quality_score = 95
    ex.tags = None
    repo.update_example(ex)
    result = repo.get_example("e1")
    assert result.quality_score == 95
    assert result.tags is None


def test_delete_example(repo):
    repo.add_example(_example(), _vec(0.5))
    assert repo.delete_example("e1") is True
    assert repo.count_examples() == 0
    assert repo.count_embedded(EXAMPLE_VEC_TABLE) == 0


# ------------------------------------------------------------------
# Nearest-neighbour search
# ------------------------------------------------------------------

def test_nearest_documents_ordered_and_thresholded(repo):
    repo.add_document(_doc(id="low"), _vec(0.5))
    repo.add_document(_doc(id="high"), _vec(0.9))
    repo.add_document(_doc(id="mid"), _vec(0.8))
    hits = repo.nearest_documents(QUERY, min_similarity=0.7, limit=10)
    assert [d.id for d, _ in hits] == ["high", "mid"]
    assert hits[0][1] == pytest.approx(0.1, abs=1e-4)


def test_nearest_documents_respects_limit(repo):
    for i, s in enumerate((0.9, 0.85, 0.8)):
        repo.add_document(_doc(id=f"d{i}"), _vec(s))
    hits = repo.nearest_documents(QUERY, min_similarity=0.0, limit=2)
    assert [d.id for d, _ in hits] == ["d0", "d1"]


def test_nearest_documents_skips_unembedded(repo):
    repo.add_document(_doc(id="plain"))
    assert repo.nearest_documents(QUERY, min_similarity=0.0, limit=5) == []


def test_nearest_documents_keyword_filter(repo):
    repo.add_document(_doc(id="a", content="Use deep_get for nested fields."), _vec(0.6))
    repo.add_document(_doc(id="b", content="Severity levels."), _vec(0.9))
    hits = repo.nearest_documents(
        QUERY, min_similarity=0.3, limit=5, filters=[ContainsAny(("DEEP_GET",))]
    )
    assert [d.id for d, _ in hits] == ["a"]


def test_nearest_documents_metadata_filter(repo):
    repo.add_document(_doc(id="a", metadata='{"category": "okta"}'), _vec(0.6))
    repo.add_document(_doc(id="b", metadata='{"category": "aws"}'), _vec(0.9))
    hits = repo.nearest_documents(
        QUERY, min_similarity=0.0, limit=5, filters=[MetadataEquals("category", "okta")]
    )
    assert [d.id for d, _ in hits] == ["a"]


def test_nearest_examples_category_filter(repo):
    repo.add_example(_example(id="e1", category="okta"), _vec(0.7))
    repo.add_example(_example(id="e2", category="aws"), _vec(0.95))
    hits = repo.nearest_examples(
        QUERY, min_similarity=0.5, limit=5, filters=[CategoryEquals("okta")]
    )
    assert [e.id for e, _ in hits] == ["e1"]
    assert hits[0][1] == pytest.approx(0.3, abs=1e-4)


def test_documents_by_metadata(repo):
    repo.add_document(_doc(id="a", metadata='{"category": "okta"}'))
    repo.add_document(_doc(id="b", metadata='{"category": "aws"}'))
    assert [d.id for d in repo.documents_by_metadata("category", "aws", 10)] == ["b"]


def test_nearest_documents_without_vec_table_raises(tmp_path):
    from rulecheck.db.connection import Database
    from rulecheck.db.migrations import run_migrations
    from rulecheck.db.repository import Repository

    conn = Database(tmp_path / "novec.db").connect()
    run_migrations(conn)
    with pytest.raises(RuntimeError, match="rulecheck init"):
        Repository(conn).nearest_documents(QUERY, min_similarity=0.5, limit=3)
    conn.close()


def test_concurrent_searches_share_repository(repo):
    repo.add_document(_doc(id="d1"), _vec(0.9))
    repo.add_example(_example(id="e1"), _vec(0.9))
    results: list[int] = []
    errors: list[Exception] = []

    def worker() -> None:
        try:
            for _ in range(20):
                results.append(len(repo.nearest_documents(QUERY, 0.5, 3)))
                results.append(len(repo.nearest_examples(QUERY, 0.5, 3)))
        except Exception as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert set(results) == {1}


# ------------------------------------------------------------------
# Statistics
# ------------------------------------------------------------------

def test_stats_on_empty_repository(repo):
    assert repo.count_documents() == 0
    assert repo.count_examples() == 0
    assert repo.document_type_counts() == {}
    assert repo.example_category_counts() == {}
    assert repo.last_created_at() is None


def test_type_and_category_counts(repo):
    repo.add_document(_doc(id="d1"))
    repo.add_document(_doc(id="d2"))
    repo.add_document(_doc(id="d3", document_type="best-practice"))
    repo.add_example(_example(id="e1", category="okta"))
    repo.add_example(_example(id="e2"))
    assert repo.document_type_counts() == {"best-practice": 1, "rule": 2}
    assert repo.example_category_counts() == {"okta": 1}
    assert repo.last_created_at() is not None


def test_count_embedded_unknown_table_raises(repo):
    with pytest.raises(ValueError):
        repo.count_embedded("knowledge_documents")


# ------------------------------------------------------------------
# Validations
# ------------------------------------------------------------------

def test_add_validation_with_references(repo):
    repo.add_document(_doc(id="d1"))
    repo.add_example(_example(id="e1"))
    repo.add_validation(
        _record(),
        [DocumentReference("d1", 0.93, "rag-enhanced-validation")],
        [ExampleReference("e1", 0.81, ["See okta category best practices"])],
    )
    stored = repo.get_validation("v1")
    assert stored.syntax_is_valid is True
    assert stored.rule_findings == ["uses deep_get"]
    assert stored.model_used == "anthropic/claude-3-5-sonnet"

    doc_refs = repo.list_document_references("v1")
    assert doc_refs[0].document_id == "d1"
    assert doc_refs[0].usage_context == "rag-enhanced-validation"
    ex_refs = repo.list_example_references("v1")
    assert ex_refs[0].improvements == ["See okta category best practices"]


def test_add_validation_rolls_back_on_bad_reference(repo):
    with pytest.raises(sqlite3.IntegrityError):
        repo.add_validation(_record(), [DocumentReference("ghost", 0.5)])
    assert repo.get_validation("v1") is None


def test_get_validation_missing(repo):
    assert repo.get_validation("nope") is None
