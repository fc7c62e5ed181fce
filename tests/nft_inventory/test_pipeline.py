"""
Tests for the aggregation pipeline.

Covers:
- Full runs across several pages
- Growth-only publishing and per-run uniqueness
- Partial attribute failures and listing failures
- Re-entrancy, subscribers and pacing
"""

import asyncio

import pytest

from nft_inventory.exceptions import FetchError, ListingError
from nft_inventory.metadata import MetadataResolver
from nft_inventory.models import ListingRequest, PipelineState, RecordKind, ResolvedMetadata
from nft_inventory.pipeline import AggregationPipeline


class FakeResolver(MetadataResolver):
    """Resolves every token to a deterministic document without I/O."""

    def __init__(self, gate: asyncio.Event = None, started: asyncio.Event = None):
        super().__init__(gateways=("https://gw.example",))
        self.gate = gate
        self.started = started
        self.resolved_ids = []

    async def resolve(self, token_id, locator):
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        self.resolved_ids.append(token_id)
        return ResolvedMetadata(name=f"Token {token_id}", image=f"https://img.example/{token_id}.png")


def make_pipeline(listing, attributes, request, sleep, **kwargs):
    kwargs.setdefault("resolver", FakeResolver())
    return AggregationPipeline(listing, attributes, request, sleep=sleep, **kwargs)


def collector(pipeline):
    snapshots = []
    pipeline.subscribe(snapshots.append)
    return snapshots


# ============================================================
# FULL RUNS
# ============================================================

class TestRun:

    @pytest.mark.asyncio
    async def test_assembles_every_token(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(
            fake_listing(list(range(1, 251))), fake_attributes(), listing_request, recorded_sleep
        )

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.DONE
        assert len(snapshot) == 250
        assert snapshot.total_count == 250
        assert snapshot.has_more is False
        assert snapshot.token_ids() == list(range(1, 251))
        assert all(record.is_resolved for record in snapshot)
        assert pipeline.snapshot is snapshot
        assert pipeline.state == PipelineState.DONE

    @pytest.mark.asyncio
    async def test_publishing_only_grows(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(
            fake_listing(list(range(250))), fake_attributes(), listing_request, recorded_sleep
        )
        snapshots = collector(pipeline)

        await pipeline.run()

        assert snapshots[0].state == PipelineState.IDLE
        assert len(snapshots[0]) == 0
        assert snapshots[-1].state == PipelineState.DONE
        sizes = [len(s) for s in snapshots]
        assert sizes == sorted(sizes)
        for prev, cur in zip(snapshots, snapshots[1:]):
            assert set(prev.token_ids()) <= set(cur.token_ids())
        for snap in snapshots:
            ids = snap.token_ids()
            assert len(ids) == len(set(ids))
            assert all(snap.get(token_id).token_id == token_id for token_id in ids)
        states = {s.state for s in snapshots}
        assert {PipelineState.PUBLISHING, PipelineState.METADATA_ENRICHING} <= states

    @pytest.mark.asyncio
    async def test_placeholders_published_before_enrichment(
        self, fake_listing, fake_attributes, listing_request, recorded_sleep
    ):
        pipeline = make_pipeline(fake_listing([1, 2]), fake_attributes(), listing_request, recorded_sleep)
        snapshots = collector(pipeline)

        await pipeline.run()

        first_publish = next(s for s in snapshots if s.state == PipelineState.PUBLISHING)
        record = first_publish.get(1)
        assert record.metadata.is_placeholder
        assert record.name == "#1"
        assert record.image_url == "ipfs://cid/1.json"
        assert snapshots[-1].get(1).name == "Token 1"

    @pytest.mark.asyncio
    async def test_classifies_records(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        attributes = fake_attributes(attributes=lambda token_id: {
            "is_egg": token_id == 1,
            "is_snake": token_id == 2,
            "owner_is_warden": token_id in (2, 3),
        })
        pipeline = make_pipeline(fake_listing([1, 2, 3, 4]), attributes, listing_request, recorded_sleep)

        snapshot = await pipeline.run()

        kinds = {record.token_id: record.kind for record in snapshot}
        assert kinds == {
            1: RecordKind.EGG,
            2: RecordKind.SNAKE,
            3: RecordKind.WARDEN,
            4: RecordKind.HUMAN,
        }

    @pytest.mark.asyncio
    async def test_duplicate_ids_across_pages(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(
            fake_listing([1, 2, 3, 3, 4, 1]), fake_attributes(), listing_request, recorded_sleep, page_size=3
        )

        snapshot = await pipeline.run()

        assert snapshot.token_ids() == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_empty_wallet(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        attributes = fake_attributes()
        pipeline = make_pipeline(fake_listing([]), attributes, listing_request, recorded_sleep)

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.DONE
        assert len(snapshot) == 0
        assert attributes.batches == []

    @pytest.mark.asyncio
    async def test_page_ceiling_leaves_has_more(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(
            fake_listing(list(range(250))), fake_attributes(), listing_request, recorded_sleep, max_pages=1
        )

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.DONE
        assert len(snapshot) == 100
        assert snapshot.has_more is True

    @pytest.mark.asyncio
    async def test_second_run_starts_fresh(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(fake_listing([1, 2, 3]), fake_attributes(), listing_request, recorded_sleep)
        snapshots = collector(pipeline)

        await pipeline.run()
        second = await pipeline.run()

        assert second.run_id == 2
        assert len(second) == 3
        second_run = [s for s in snapshots if s.run_id == 2]
        assert second_run[0].state == PipelineState.IDLE
        assert len(second_run[0]) == 0


# ============================================================
# FAILURES
# ============================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_failed_sub_batch_is_dropped(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        attributes = fake_attributes(failures={30: [FetchError("HTTP 500", status_code=500)]})
        pipeline = make_pipeline(fake_listing(list(range(250))), attributes, listing_request, recorded_sleep)

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.DONE
        assert len(snapshot) == 220
        assert not any(token_id in snapshot for token_id in range(30, 60))
        assert 60 in snapshot
        assert pipeline.stats()["dropped_ids"] == 30
        incident = pipeline.get_incidents()[-1]
        assert incident.source_name == "fake_attributes"
        assert incident.token_ids == list(range(30, 60))

    @pytest.mark.asyncio
    async def test_rate_limited_sub_batch_is_retried(
        self, fake_listing, fake_attributes, listing_request, recorded_sleep
    ):
        attributes = fake_attributes(failures={0: [FetchError("429", status_code=429)]})
        pipeline = make_pipeline(
            fake_listing(list(range(10))), attributes, listing_request, recorded_sleep, retry_base_delay=2.0
        )

        snapshot = await pipeline.run()

        assert len(snapshot) == 10
        assert recorded_sleep.delays[0] == 2.0

    @pytest.mark.asyncio
    async def test_listing_failure_keeps_collected_records(
        self, fake_listing, fake_attributes, listing_request, recorded_sleep
    ):
        error = ListingError("upstream down", source_name="fake_listing", cursor="100")
        listing = fake_listing(list(range(300)), failures={"100": error})
        pipeline = make_pipeline(listing, fake_attributes(), listing_request, recorded_sleep)
        snapshots = collector(pipeline)

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.ERROR
        assert len(snapshot) == 100
        assert "upstream down" in snapshot.error
        assert snapshot.has_more is False
        assert snapshots[-1] is snapshot
        assert pipeline.get_incidents()[-1].source_name == "fake_listing"

    @pytest.mark.asyncio
    async def test_listing_failure_on_first_page(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        listing = fake_listing([1], failures={None: ListingError("nope", source_name="fake_listing")})
        pipeline = make_pipeline(listing, fake_attributes(), listing_request, recorded_sleep)

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.ERROR
        assert len(snapshot) == 0


# ============================================================
# RUN CONTROL AND SUBSCRIBERS
# ============================================================

class TestRunControl:

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_ignored(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        gate, started = asyncio.Event(), asyncio.Event()
        pipeline = make_pipeline(
            fake_listing([1, 2]), fake_attributes(), listing_request, recorded_sleep,
            resolver=FakeResolver(gate=gate, started=started),
        )

        first = asyncio.create_task(pipeline.run())
        await started.wait()

        assert pipeline.is_running
        assert await pipeline.run() is None

        gate.set()
        snapshot = await first

        assert snapshot.state == PipelineState.DONE
        assert snapshot.run_id == 1
        assert not pipeline.is_running

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_run(
        self, fake_listing, fake_attributes, listing_request, recorded_sleep
    ):
        pipeline = make_pipeline(fake_listing([1, 2]), fake_attributes(), listing_request, recorded_sleep)

        def broken(snapshot):
            raise RuntimeError("subscriber bug")

        pipeline.subscribe(broken)
        snapshots = collector(pipeline)

        snapshot = await pipeline.run()

        assert snapshot.state == PipelineState.DONE
        assert snapshots[-1] is snapshot

    @pytest.mark.asyncio
    async def test_async_subscriber_and_unsubscribe(
        self, fake_listing, fake_attributes, listing_request, recorded_sleep
    ):
        pipeline = make_pipeline(fake_listing([1]), fake_attributes(), listing_request, recorded_sleep)
        received = []

        async def on_publish(snapshot):
            received.append(snapshot.state)

        unsubscribe = pipeline.subscribe(on_publish)
        await pipeline.run()
        count = len(received)
        unsubscribe()
        unsubscribe()
        await pipeline.run()

        assert received[-1] == PipelineState.DONE
        assert len(received) == count

    @pytest.mark.asyncio
    async def test_pacing_delays(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(
            fake_listing(list(range(50))), fake_attributes(), listing_request, recorded_sleep,
            page_size=25, batch_delay=0.8, page_delay=0.5,
        )

        await pipeline.run()

        # One metadata chunk gap per page, one gap between pages
        assert recorded_sleep.delays == [0.8, 0.5, 0.8]

    @pytest.mark.asyncio
    async def test_stats(self, fake_listing, fake_attributes, listing_request, recorded_sleep):
        pipeline = make_pipeline(fake_listing(list(range(40))), fake_attributes(), listing_request, recorded_sleep)

        await pipeline.run()
        stats = pipeline.stats()

        assert stats["state"] == "done"
        assert stats["records"] == 40
        assert stats["offset"] == 40
        assert stats["fetcher"]["batches"] == 2
        assert stats["walker"]["pages_fetched"] == 1

    def test_invalid_request_rejected(self, fake_listing, fake_attributes, recorded_sleep):
        with pytest.raises(ValueError):
            make_pipeline(
                fake_listing([]), fake_attributes(), ListingRequest("nope", "0x" + "22" * 20), recorded_sleep
            )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
