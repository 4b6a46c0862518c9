"""
Tests for board strategies, the strategy registry and the shared helpers.
"""

import pytest

from boards import BOARD_CATALOG, STRATEGIES, StrategyRegistry, normalize_board_key, resolve
from boards.base import (
    BoardStrategy,
    LoginFlow,
    PostingCredentials,
    detect_submission_outcome,
    format_description,
    format_salary,
    safe_fill,
    url_changed,
)
from boards.mit import MITStrategy
from boards.princeton import PrincetonStrategy
from boards.stanford import StanfordStrategy
from core.errors import STATUS_UNCLEAR, AutomationError
from tests.conftest import FakeSession, make_board, make_job

CREDENTIALS = PostingCredentials(username="poster", password="s3cret", email="poster@acme.test")


class TestRegistry:
    @pytest.mark.parametrize("name,expected", [
        ("Harvard University", "harvard"),
        ("MIT", "mit"),
        ("  Stanford University ", "stanford"),
        ("Princeton", "princeton"),
        ("Yale University School of Management", "yale"),
    ])
    def test_normalize(self, name, expected):
        assert normalize_board_key(name) == expected

    def test_resolve_returns_fresh_instances(self):
        first = resolve("MIT")
        second = resolve("MIT")
        assert isinstance(first, MITStrategy)
        assert first is not second

    def test_unknown_board(self):
        assert resolve("Acme Careers") is None

    def test_resolve_board_by_code(self):
        registry = StrategyRegistry()
        board = make_board("x", "Handshake Princeton", code="princeton")
        assert isinstance(registry.resolve_board(board), PrincetonStrategy)

    def test_register_and_kwargs(self):
        class AcmeStrategy(BoardStrategy):
            name = "Acme Careers"

        registry = StrategyRegistry({}, element_timeout=2.5)
        registry.register("Acme Careers", AcmeStrategy)
        strategy = registry.resolve("acme careers")
        assert isinstance(strategy, AcmeStrategy)
        assert strategy.element_timeout == 2.5
        assert "Acme Careers" in registry
        assert registry.keys() == ["acmecareers"]

    def test_catalog_boards_all_have_strategies(self):
        registry = StrategyRegistry()
        assert len(BOARD_CATALOG) == len(STRATEGIES)
        for board in BOARD_CATALOG:
            assert registry.resolve_board(board) is not None


class TestHelpers:
    def test_format_salary(self):
        assert format_salary(50000, 70000) == "$50,000 - $70,000"
        assert format_salary(50000) == "$50,000+"
        assert format_salary(None, 70000) == "Up to $70,000"
        assert format_salary() == "Competitive"

    def test_format_description(self):
        text = format_description(make_job(department="Genomics"))
        assert text.startswith("Department: Genomics")
        assert "Company: Acme Labs" in text
        assert text.endswith("To apply, please contact: hiring@acme.test")

    @pytest.mark.parametrize("current,post_url,changed", [
        ("https://b.test/post", "https://b.test/post", False),
        ("https://b.test/post/", "https://b.test/post", False),
        ("https://b.test/post#step2", "https://b.test/post", False),
        ("https://b.test/jobs/12", "https://b.test/post", True),
        ("about:blank", "https://b.test/post", False),
        ("", "https://b.test/post", False),
    ])
    def test_url_changed(self, current, post_url, changed):
        assert url_changed(current, post_url) is changed

    def test_credentials(self):
        assert CREDENTIALS.login_name == "poster@acme.test"
        assert not PostingCredentials()
        assert PostingCredentials(username="u", password="p")


@pytest.mark.asyncio
class TestSessionHelpers:
    async def test_safe_fill_uses_select_for_select_elements(self):
        session = FakeSession(selects={"#type"})
        assert await safe_fill(session, "#type", "Full-Time")
        assert session.ops("select") == [("select", "#type", "Full-Time")]

    async def test_safe_fill_reports_failure(self):
        session = FakeSession(fail_fill={"#t"})
        assert await safe_fill(session, "#t", "x") is False

    async def test_error_beats_success(self):
        session = FakeSession(
            url="https://b.test/done",
            present={".success", ".error-message"},
            texts={".error-message": "Description too short"},
        )
        outcome = await detect_submission_outcome(session, "https://b.test/post", [".success"])
        assert not outcome.success
        assert outcome.error_message == "Description too short"

    async def test_success_indicator(self):
        session = FakeSession(url="https://b.test/post", present={".success"})
        outcome = await detect_submission_outcome(session, "https://b.test/post", [".success"])
        assert outcome.success
        assert outcome.external_url is None

    async def test_url_change_is_success(self):
        session = FakeSession(url="https://b.test/jobs/77")
        outcome = await detect_submission_outcome(session, "https://b.test/post", [])
        assert outcome.success
        assert outcome.external_url == "https://b.test/jobs/77"

    async def test_no_signal_is_failure(self):
        session = FakeSession(url="https://b.test/post")
        outcome = await detect_submission_outcome(
            session, "https://b.test/post", [".success"], timeout=0.02, poll_interval=0.01,
        )
        assert not outcome.success
        assert outcome.error_message == STATUS_UNCLEAR


@pytest.mark.asyncio
class TestLogin:
    async def test_no_login_flow(self):
        class PublicStrategy(BoardStrategy):
            name = "Public"
            login_flow = LoginFlow.NONE

        session = FakeSession()
        await PublicStrategy().login(session, None, make_board("p", "Public"))
        assert session.calls == []

    async def test_credentials_login(self):
        session = FakeSession(present={"#username"})
        strategy = StanfordStrategy(settle_delay=0)

        await strategy.login(session, CREDENTIALS, make_board("stanford", "Stanford University"))

        assert ("navigate", "https://careersearch.stanford.edu") in session.calls
        assert ("fill", "#username", "poster@acme.test") in session.calls
        assert ("fill", "#password", "s3cret") in session.calls
        assert ("click", 'button[type="submit"]') in session.calls

    async def test_already_logged_in(self):
        session = FakeSession(present={'a:has-text("Logout")'})
        await StanfordStrategy(settle_delay=0).login(session, CREDENTIALS, make_board("s", "Stanford University"))
        assert session.ops("fill") == []

    async def test_missing_credentials(self):
        session = FakeSession(present={"#username"})
        with pytest.raises(AutomationError, match="credentials are not configured"):
            await StanfordStrategy(settle_delay=0).login(session, None, make_board("s", "Stanford University"))

    async def test_required_login_form_missing(self):
        with pytest.raises(AutomationError, match="login form not found"):
            await StanfordStrategy(settle_delay=0).login(FakeSession(), CREDENTIALS, make_board("s", "Stanford University"))

    async def test_optional_login_form_missing(self):
        session = FakeSession()
        await MITStrategy(settle_delay=0).login(session, CREDENTIALS, make_board("mit", "MIT"))
        assert session.ops("fill") == []

    async def test_mfa_is_reported(self):
        session = FakeSession(
            present={"#username"},
            on_click={'button[type="submit"]': lambda s: s.present.add('input[name="otp"]')},
        )
        with pytest.raises(AutomationError, match="multi-factor"):
            await StanfordStrategy(settle_delay=0).login(session, CREDENTIALS, make_board("s", "Stanford University"))

    async def test_login_error_text(self):
        strategy = StanfordStrategy(settle_delay=0)
        session = FakeSession(
            present={"#username"},
            texts={strategy.login_error_selector: "Invalid SUNet ID"},
            on_click={'button[type="submit"]': lambda s: s.present.add(strategy.login_error_selector)},
        )
        with pytest.raises(AutomationError, match="Login failed: Invalid SUNet ID"):
            await strategy.login(session, CREDENTIALS, make_board("s", "Stanford University"))

    async def test_employer_link_opened_before_login(self):
        strategy = MITStrategy(settle_delay=0)
        session = FakeSession(present={strategy.employer_link, 'input[name="email"]'})
        await strategy.login(session, CREDENTIALS, make_board("mit", "MIT"))
        clicks = [c[1] for c in session.ops("click")]
        assert clicks[0] == strategy.employer_link


@pytest.mark.asyncio
class TestFormFilling:
    async def test_selector_overrides_from_board(self):
        strategy = MITStrategy(settle_delay=0)
        board = make_board("mit", "MIT", selectors={"title": "#new_title"})
        session = FakeSession()

        await strategy.fill_form(session, make_job(), board)

        filled = {c[1]: c[2] for c in session.ops("fill")}
        assert "#new_title" in filled
        assert "#job_title" not in filled

    async def test_employment_type_mapping(self):
        strategy = MITStrategy(settle_delay=0)
        session = FakeSession(selects={'select[name="employment_type"]'})
        await strategy.fill_form(session, make_job(employment_type="Part-Time"), make_board("mit", "MIT"))
        assert ("select", 'select[name="employment_type"]', "Part-Time") in session.calls

    async def test_optional_field_failure_is_tolerated(self):
        strategy = MITStrategy(settle_delay=0)
        session = FakeSession(fail_fill={"#salary_min"})
        await strategy.fill_form(session, make_job(), make_board("mit", "MIT"))
        assert ("fill", "#job_title", "Research Software Engineer") in session.calls

    async def test_mit_extra_fields_only_when_present(self):
        strategy = MITStrategy(settle_delay=0)
        session = FakeSession(present={"#application_url"})
        await strategy.fill_form(session, make_job(), make_board("mit", "MIT"))
        assert ("fill", "#application_url", "mailto:hiring@acme.test") in session.calls
        assert not any(c[1] == 'input[name="application_deadline"]' for c in session.ops("fill"))

    async def test_princeton_steps_through_form(self):
        strategy = PrincetonStrategy(settle_delay=0)
        session = FakeSession(present={strategy.continue_button}, selects={'select[name="job_type"]'})

        await strategy.fill_form(session, make_job(), make_board("princeton", "Princeton University"))

        sequence = [c[1] for c in session.calls if c[0] in ("fill", "select", "click")]
        title_index = sequence.index('input[name="title"]')
        location_index = sequence.index('input[name="location"]')
        continue_indexes = [i for i, s in enumerate(sequence) if s == strategy.continue_button]
        assert len(continue_indexes) == 2
        assert title_index < continue_indexes[0] < location_index
        assert ("select", 'select[name="job_type"]', "Full-Time") in session.calls


@pytest.mark.asyncio
class TestSubmitAndVerify:
    async def test_preview_then_confirm(self):
        strategy = MITStrategy(settle_delay=0)
        session = FakeSession(present={strategy.preview_selector, strategy.confirm_selector, strategy.submit_selector})
        await strategy.submit(session)
        assert [c[1] for c in session.ops("click")] == [strategy.preview_selector, strategy.confirm_selector]

    async def test_princeton_reference_link(self):
        strategy = PrincetonStrategy(settle_delay=0)
        board = make_board("princeton", "Princeton University", post_url="https://princeton.joinhandshake.com/employers")
        session = FakeSession(
            url="https://princeton.joinhandshake.com/employers",
            present={"text=/successfully posted/i", strategy.job_link},
            attributes={strategy.job_link: {"href": "/jobs/123456"}},
        )

        outcome = await strategy.verify(session, board, timeout=0.1)

        assert outcome.success
        assert outcome.external_url == "https://princeton.joinhandshake.com/jobs/123456"
