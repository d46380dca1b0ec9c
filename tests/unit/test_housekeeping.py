"""Maintenance sweep, cache purge and bulk re-crawl tests."""

from datetime import timedelta

import pytest

from sitekb.core.errors import MaintenanceBusy
from sitekb.core.firestore import utcnow
from sitekb.features.housekeeping.lock import MaintenanceLock
from sitekb.features.housekeeping.service import TIMED_OUT
from sitekb.features.resources.models import ResourceKind, ResourceStatus, WebsiteSource


async def website(registry, status=ResourceStatus.COMPLETED, tenant_id="tenant-a"):
    resource = await registry.create_resource(
        tenant_id, ResourceKind.WEBSITE_URL, WebsiteSource(url="https://example.com")
    )
    await registry.mark_status(resource.id, ResourceStatus.PROCESSING)
    if status != ResourceStatus.PROCESSING:
        error = "boom" if status == ResourceStatus.FAILED else None
        await registry.mark_status(resource.id, status, error=error)
    return await registry.get_resource(resource.id)


class TestSweep:
    async def test_stale_resources_are_failed(self, housekeeping, registry):
        stuck = await website(registry, ResourceStatus.CRAWLING)

        result = await housekeeping.sweep_stale(now=utcnow() + timedelta(hours=2))

        assert result.failed == [stuck.id]
        swept = await registry.get_resource(stuck.id)
        assert swept.status == ResourceStatus.FAILED
        assert swept.error == TIMED_OUT

    async def test_recent_and_finished_resources_are_left_alone(self, housekeeping, registry):
        recent = await website(registry, ResourceStatus.PROCESSING)
        done = await website(registry, ResourceStatus.COMPLETED)

        result = await housekeeping.sweep_stale()

        assert result.failed == []
        assert (await registry.get_resource(recent.id)).status == ResourceStatus.PROCESSING
        assert (await registry.get_resource(done.id)).status == ResourceStatus.COMPLETED

    async def test_swept_resources_can_be_reindexed(self, housekeeping, registry):
        stuck = await website(registry, ResourceStatus.PROCESSING)
        await housekeeping.sweep_stale(now=utcnow() + timedelta(hours=2))

        claimed = await registry.request_reindex(stuck.id)

        assert claimed.status == ResourceStatus.QUEUED

    async def test_stale_documents_are_failed(self, housekeeping, document_service):
        stuck = await document_service.upload_document(
            "tenant-a", b"Some text", "notes.txt", "text/plain"
        )

        result = await housekeeping.sweep_stale(now=utcnow() + timedelta(hours=2))

        assert result.documents == [stuck.id]
        swept = await document_service.get_document(stuck.id, "tenant-a")
        assert swept.processing_status == ResourceStatus.FAILED
        assert swept.processing_error == TIMED_OUT

    async def test_processed_and_recent_documents_are_left_alone(
        self, housekeeping, document_service
    ):
        done = await document_service.upload_document("tenant-a", b"Done", "a.txt", "text/plain")
        await document_service.process_document(done.id)
        recent = await document_service.upload_document("tenant-a", b"New", "b.txt", "text/plain")

        result = await housekeeping.sweep_stale()

        assert result.documents == []
        assert (await document_service.get_document(done.id, "tenant-a")).processing_status == (
            ResourceStatus.COMPLETED
        )
        assert (await document_service.get_document(recent.id, "tenant-a")).processing_status == (
            ResourceStatus.PROCESSING
        )

    async def test_late_extraction_of_swept_document_is_discarded(
        self, housekeeping, document_service
    ):
        stuck = await document_service.upload_document(
            "tenant-a", b"Some text", "notes.txt", "text/plain"
        )
        await housekeeping.sweep_stale(now=utcnow() + timedelta(hours=2))

        assert await document_service.process_document(stuck.id) is None


class TestProcessWebsites:
    async def test_requeues_idle_websites(self, housekeeping, registry, queue):
        done = await website(registry, ResourceStatus.COMPLETED)
        failed = await website(registry, ResourceStatus.FAILED, tenant_id="tenant-b")
        busy = await website(registry, ResourceStatus.CRAWLING)

        result = await housekeeping.process_websites()

        assert sorted(result.queued) == sorted([done.id, failed.id])
        assert result.skipped == [busy.id]
        assert result.failed == []
        assert len(queue.sent) == 2

    async def test_enqueue_failures_are_reported(self, housekeeping, registry, queue):
        done = await website(registry, ResourceStatus.COMPLETED)
        queue.fail_with = RuntimeError("topic deleted")

        result = await housekeeping.process_websites()

        assert result.failed == [done.id]
        assert (await registry.get_resource(done.id)).status == ResourceStatus.FAILED

    async def test_only_one_run_at_a_time(self, housekeeping, firestore):
        holder = MaintenanceLock(firestore)
        assert await holder.acquire()

        with pytest.raises(MaintenanceBusy):
            await housekeeping.process_websites()

        await holder.release()
        await housekeeping.process_websites()

    async def test_lock_is_released_after_run(self, housekeeping, firestore):
        await housekeeping.process_websites()
        assert await MaintenanceLock(firestore).acquire()


class TestMaintenanceLock:
    async def test_expired_lock_can_be_taken_over(self, firestore):
        abandoned = MaintenanceLock(firestore, ttl=timedelta(seconds=-1))
        assert await abandoned.acquire()

        assert await MaintenanceLock(firestore).acquire()

    async def test_release_by_non_owner_is_ignored(self, firestore):
        owner = MaintenanceLock(firestore)
        await owner.acquire()

        await MaintenanceLock(firestore).release()

        assert not await MaintenanceLock(firestore).acquire()


class TestAdminAPI:
    def test_requires_admin_token(self, client):
        assert client.post("/api/admin/housekeeping/sweep").status_code == 422
        assert client.post(
            "/api/admin/housekeeping/sweep", headers={"X-Admin-Token": "wrong"}
        ).status_code == 401

    def test_sweep(self, client, admin_headers):
        response = client.post("/api/admin/housekeeping/sweep", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"failed": [], "documents": []}

    async def test_purge_cache(self, client, admin_headers, cache, fake_db):
        await cache.put("https://example.com/", "body")
        [key] = [p for p in fake_db.docs if p.startswith("page_cache/")]
        data, update_time = fake_db.docs[key]
        fake_db.docs[key] = ({**data, "expires_at": utcnow() - timedelta(minutes=1)}, update_time)

        response = client.post("/api/admin/housekeeping/purge-cache", headers=admin_headers)

        assert response.json() == {"removed": 1}

    async def test_process_websites_conflict(self, client, admin_headers, firestore):
        await MaintenanceLock(firestore).acquire()

        response = client.post("/api/admin/process-websites", headers=admin_headers)

        assert response.status_code == 409
