import pytest

from genmedia.domain.models import MaterializedAsset, TerminalOutcome
from genmedia.services.record_updater import RecordUpdater

ASSET = MaterializedAsset(
    storage_path="users/u/uploads/videos/generate/1_x.mp4",
    url="https://acct.blob.core.windows.net/media-private/users/u/uploads/videos/generate/1_x.mp4?sig=1",
    content_type="video/mp4",
    bytes=10,
    sha256="ab",
)


async def _record(repo, kind="video"):
    row = await repo.create_record(
        owner_id="u",
        model="kling-v2",
        provider="replicate",
        kind=kind,
        category="generated-videos",
        dispatch="inline",
        input_json={"prompt": "a cat"},
    )
    return row["id"]


@pytest.mark.asyncio
async def test_success_with_asset_completes_and_clears_errors(repo):
    rid = await _record(repo)
    repo.rows[rid]["error"] = "stale"
    outcome = TerminalOutcome.succeeded(("https://vendor/x.mp4",))

    row = await RecordUpdater(repo).apply_outcome(rid, outcome, asset=ASSET)

    assert row["status"] == "completed"
    assert row["job_status"] == "succeeded"
    assert row["stored_url"] == ASSET.url
    assert row["storage_path"] == ASSET.storage_path
    assert row["output_url"] == "https://vendor/x.mp4"
    assert row["error"] is None and row["error_code"] is None


@pytest.mark.asyncio
async def test_materialize_failure_keeps_vendor_url(repo):
    rid = await _record(repo)
    outcome = TerminalOutcome.succeeded(("https://vendor/x.mp4",))

    row = await RecordUpdater(repo, failure_policy="complete").apply_outcome(
        rid, outcome, materialize_error="storage_write_failed: boom"
    )

    assert row["status"] == "completed"
    assert row["output_url"] == "https://vendor/x.mp4"
    assert row["stored_url"] is None
    assert row["materialize_error"] == "storage_write_failed: boom"


@pytest.mark.asyncio
async def test_materialize_failure_under_fail_policy(repo):
    rid = await _record(repo)
    outcome = TerminalOutcome.succeeded(("https://vendor/x.mp4",))

    row = await RecordUpdater(repo, failure_policy="fail").apply_outcome(rid, outcome, materialize_error="nope")

    assert row["status"] == "failed"
    assert row["error_code"] == "MATERIALIZE_FAILED"
    assert row["output_url"] == "https://vendor/x.mp4"
    assert row["stored_url"] is None


@pytest.mark.asyncio
async def test_text_output_is_joined(repo):
    rid = await _record(repo, kind="text")
    outcome = TerminalOutcome.succeeded(("Hel", "lo", " world"))

    row = await RecordUpdater(repo).apply_outcome(rid, outcome, text_output=True)

    assert row["status"] == "completed"
    assert row["output_text"] == "Hello world"


@pytest.mark.asyncio
async def test_vendor_failure_keeps_message_exactly(repo):
    rid = await _record(repo)

    row = await RecordUpdater(repo).apply_outcome(rid, TerminalOutcome.failed("quota exceeded"))

    assert row["status"] == "failed"
    assert row["job_status"] == "failed"
    assert row["error_code"] == "VENDOR_FAILED"
    assert row["error"] == "quota exceeded"


@pytest.mark.asyncio
async def test_timeout_is_distinct_from_vendor_failure(repo):
    rid = await _record(repo)

    row = await RecordUpdater(repo).apply_outcome(
        rid, TerminalOutcome.timed_out("generation_timed_out: no terminal vendor status after 3 attempts", attempts=3)
    )

    assert row["status"] == "failed"
    assert row["job_status"] == "timedOut"
    assert row["error_code"] == "TIMEOUT"
    assert "timed_out" in row["error"]


@pytest.mark.asyncio
async def test_terminal_record_is_never_regressed(repo):
    rid = await _record(repo)
    updater = RecordUpdater(repo)
    await updater.apply_outcome(rid, TerminalOutcome.failed("quota exceeded"))

    row = await updater.apply_outcome(rid, TerminalOutcome.succeeded(("https://vendor/x.mp4",)), asset=ASSET)

    assert row["status"] == "failed"
    assert row["error"] == "quota exceeded"
    assert row["stored_url"] is None
    assert repo.terminal_writes == [rid]
