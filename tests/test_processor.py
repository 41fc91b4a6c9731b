"""One path through strategy fallback, quality gate and retries."""

import pytest

from mdharvest.config import QualityMode
from mdharvest.context import FailureRecord, RunContext, WorkItem
from mdharvest.errors import FetchFailure, FetchTimeout
from mdharvest.processor import Outcome, Verdict, process_item, quality_verdict
from mdharvest.retry import FailureKind
from mdharvest.storage import SHORT_CONTENT_NOTE
from mdharvest.strategies import DirectStrategy, RenderedStrategy, strategy_order

from conftest import FakeSession


class TestQualityVerdict:
    @pytest.mark.parametrize(
        "length, expected",
        [(100, Verdict.SAVE), (250, Verdict.SAVE), (99, Verdict.REJECT), (10, Verdict.REJECT), (0, Verdict.REJECT)],
    )
    def test_strict(self, length, expected):
        assert quality_verdict(length, QualityMode.STRICT, 100, 10) is expected

    @pytest.mark.parametrize(
        "length, expected",
        [(50, Verdict.SAVE), (49, Verdict.SAVE_SUSPICIOUS), (10, Verdict.SAVE_SUSPICIOUS), (9, Verdict.REJECT)],
    )
    def test_lenient(self, length, expected):
        assert quality_verdict(length, QualityMode.LENIENT, 50, 10) is expected


class TestStrategyOrder:
    def test_direct_first_by_default(self, fresh_config):
        direct, rendered = DirectStrategy(fresh_config), RenderedStrategy(fresh_config)
        prior = rendered.url_for("/a.html")
        assert strategy_order(fresh_config, direct, rendered, "/a.html", prior) == [direct, rendered]

    def test_prior_first_starts_with_last_used(self, resume_config):
        direct, rendered = DirectStrategy(resume_config), RenderedStrategy(resume_config)
        prior = rendered.url_for("/a.html")
        assert strategy_order(resume_config, direct, rendered, "/a.html", prior) == [rendered, direct]
        assert strategy_order(resume_config, direct, rendered, "/a.html", direct.url_for("/a.html")) == [direct, rendered]
        assert strategy_order(resume_config, direct, rendered, "/a.html", None) == [direct, rendered]


def _run(config, path, prior=None):
    ctx = RunContext(config)
    outcome = process_item(FakeSession(), WorkItem(path=path, index=1, prior_attempt=prior), ctx)
    return outcome, ctx


class TestProcessItem:
    def test_direct_success_first_try(self, fresh_config, script):
        script.set("direct", "/a/b.html", 150)
        outcome, ctx = _run(fresh_config, "/a/b.html")
        assert outcome is Outcome.SAVED
        dest = fresh_config.out_dir / "a" / "b.md"
        text = dest.read_text(encoding="utf-8")
        assert text.startswith("# Doc\n")
        assert "> Source URL: https://docs.example.com/a/b.html" in text
        assert "> Status:" not in text
        s = ctx.stats.snapshot()
        assert s["success"] == 1 and s["direct_success"] == 1
        assert s["timeout_retries"] == s["ordinary_retries"] == 0
        assert s["attempts"] == 1
        assert len(ctx.ledger) == 0
        assert script.calls[("rendered", "/a/b.html")] == 0

    def test_falls_through_to_rendered(self, fresh_config, script):
        script.set("direct", "/r.html", None)
        script.set("rendered", "/r.html", 120)
        outcome, ctx = _run(fresh_config, "/r.html")
        assert outcome is Outcome.SAVED
        assert ctx.stats["rendered_success"] == 1
        assert "viewer?doc=%2Fr.html" in (fresh_config.out_dir / "r.md").read_text(encoding="utf-8")

    def test_timeouts_then_short_save_on_resume(self, resume_config, script):
        script.set("direct", "/x.html", FetchTimeout("t1"), FetchTimeout("t2"), FetchTimeout("t3"), None)
        script.set("rendered", "/x.html", 30)
        outcome, ctx = _run(resume_config, "/x.html")
        assert outcome is Outcome.SAVED
        text = (resume_config.out_dir / "x.md").read_text(encoding="utf-8")
        assert "> Status: recovered on resume pass" in text
        assert SHORT_CONTENT_NOTE in text
        s = ctx.stats.snapshot()
        assert s["timeout_retries"] == 3
        assert s["suspicious_saves"] == 1
        assert s["rendered_success"] == 1
        assert len(ctx.ledger) == 0

    def test_both_empty_fails_ordinary(self, fresh_config, script):
        outcome, ctx = _run(fresh_config, "/y.html")
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.error_kind is FailureKind.ORDINARY
        assert record.retry_count == fresh_config.ordinary_retries
        assert record.last_used_url == fresh_config.rendered_url("/y.html")
        assert ctx.stats["attempts"] == fresh_config.ordinary_retries + 1
        assert ctx.stats["failed"] == 1
        assert not (fresh_config.out_dir / "y.md").exists()

    def test_strict_rejects_short_content(self, fresh_config, script):
        script.set("direct", "/s.html", 60)
        outcome, ctx = _run(fresh_config, "/s.html")
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.error_message == "Content too short: 60 chars (< 100)"
        assert record.last_used_url == fresh_config.direct_url("/s.html")
        assert not (fresh_config.out_dir / "s.md").exists()

    def test_persistent_timeout_uses_timeout_budget(self, fresh_config, script):
        script.set("direct", "/t.html", FetchTimeout("Timeout 15000ms exceeded"))
        outcome, ctx = _run(fresh_config, "/t.html")
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.error_kind is FailureKind.TIMEOUT
        assert record.retry_count == fresh_config.timeout_retries
        assert ctx.stats["timeout_retries"] == fresh_config.timeout_retries

    def test_budget_stays_escalated_after_timeout(self, fresh_config, script):
        script.set(
            "direct", "/m.html",
            FetchFailure("reset"), FetchFailure("reset"), FetchTimeout("slow"), FetchFailure("reset"),
        )
        outcome, ctx = _run(fresh_config, "/m.html")
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.retry_count == fresh_config.timeout_retries
        assert record.error_kind is FailureKind.ORDINARY
        assert ctx.stats["ordinary_retries"] + ctx.stats["timeout_retries"] == fresh_config.timeout_retries

    def test_not_found_is_ordinary_even_with_timeout_in_path(self, fresh_config, monkeypatch):
        def missing(self, session, path, *, log_prefix=""):
            self.not_found = True
            return None

        monkeypatch.setattr(DirectStrategy, "fetch", missing)
        monkeypatch.setattr(RenderedStrategy, "fetch", lambda self, session, path, *, log_prefix="": None)
        outcome, ctx = _run(fresh_config, "/guide/timeout-settings.html")
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.error_message == "Page not found"
        assert record.error_kind is FailureKind.ORDINARY
        assert record.retry_count == fresh_config.ordinary_retries
        assert ctx.stats["timeout_retries"] == 0

    def test_prior_error_is_carried(self, resume_config, script):
        prior = FailureRecord(
            path="/p.html",
            last_used_url=resume_config.rendered_url("/p.html"),
            error_message="Timeout 15000ms exceeded",
            error_kind=FailureKind.TIMEOUT,
            retry_count=6,
        )
        outcome, ctx = _run(resume_config, "/p.html", prior)
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.prior_error == "Timeout 15000ms exceeded"
        # Prior-first tried the rendered view first, so direct was the last URL used
        assert record.last_used_url == resume_config.direct_url("/p.html")

    def test_cancel_abandons_without_record(self, fresh_config, script):
        script.set("direct", "/c.html", FetchFailure("reset"))
        ctx = RunContext(fresh_config)
        ctx.cancel.set()
        outcome = process_item(FakeSession(), WorkItem(path="/c.html"), ctx)
        assert outcome is Outcome.ABANDONED
        assert len(ctx.ledger) == 0
        assert ctx.stats["failed"] == 0

    def test_cancel_before_final_failure_leaves_no_record(self, fresh_config, script):
        fresh_config.ordinary_retries = 0
        script.set("direct", "/late.html", FetchFailure("reset"))
        ctx = RunContext(fresh_config)
        ctx.cancel.set()
        outcome = process_item(FakeSession(), WorkItem(path="/late.html"), ctx)
        assert outcome is Outcome.ABANDONED
        assert len(ctx.ledger) == 0
        assert ctx.stats["failed"] == 0

    def test_sealed_ledger_refuses_late_failure(self, fresh_config, script):
        fresh_config.ordinary_retries = 0
        ctx = RunContext(fresh_config)
        assert ctx.ledger.seal() == []
        outcome = process_item(FakeSession(), WorkItem(path="/late.html"), ctx)
        assert outcome is Outcome.ABANDONED
        assert len(ctx.ledger) == 0
        assert ctx.stats["failed"] == 0

    def test_lenient_rejection_names_the_floor(self, resume_config, script):
        script.set("direct", "/tiny.html", 5)
        outcome, ctx = _run(resume_config, "/tiny.html")
        assert outcome is Outcome.FAILED
        [record] = ctx.ledger.records()
        assert record.error_message == f"Content too short: 5 chars (< {resume_config.floor_chars})"


class HtmlSession(FakeSession):
    """Serves the same HTML for every URL."""

    def __init__(self, html):
        super().__init__()
        self.html = html

    def content(self):
        return self.html


def test_resume_saves_page_just_above_floor(resume_config):
    """An 11-character page passes extraction and is saved with the short-content note."""
    session = HtmlSession("<html><body><main><p>Short note.</p></main></body></html>")
    ctx = RunContext(resume_config)
    outcome = process_item(session, WorkItem(path="/guide/note.html"), ctx)
    assert outcome is Outcome.SAVED
    text = (resume_config.out_dir / "guide" / "note.md").read_text(encoding="utf-8")
    assert "Short note." in text
    assert SHORT_CONTENT_NOTE in text
    assert ctx.stats["suspicious_saves"] == 1
