"""Retrieval and chat tests over crawled pages and documents."""

import pytest

from sitekb.core.errors import GenerationError
from sitekb.features.chat.assembler import NO_CONTEXT_NOTE, ResponseAssembler
from sitekb.features.chat.memory import ConversationMemory
from sitekb.features.chat.models import ContextBlob, ConversationTurn
from sitekb.features.chat.retrieval import RetrievalEngine
from sitekb.features.resources.models import ResourceKind
from sitekb.features.scraper.models import SiteIndexStatus
from sitekb.features.scraper.sitemap import SiteIndexStore


@pytest.fixture
async def crawled(sample_site, resource_service, worker):
    """The sample site added for tenant-a and crawled."""
    resource = await resource_service.add_website("tenant-a", "https://example.com")
    await worker.crawl_resource(resource.id)
    return resource


class TestRetrieval:
    async def test_matching_page_contributes_an_excerpt(self, crawled, retrieval):
        context = await retrieval.retrieve_context("tenant-a", "What pricing plans do you offer?")

        assert context.text.startswith("--- Pricing ---")
        assert "pricing plans start at 10 dollars" in context.text
        assert "Source: https://example.com/pricing" in context.text
        [source] = context.sources
        assert source.kind == "page"
        assert source.url == "https://example.com/pricing"
        assert source.score == 2

    async def test_cached_pages_are_not_refetched(self, crawled, sample_site, retrieval):
        before = sample_site.count("/pricing")

        await retrieval.retrieve_context("tenant-a", "pricing plans")

        assert sample_site.count("/pricing") == before

    async def test_cache_miss_fetches_and_caches(self, crawled, retrieval, cache, fake_db):
        for path in [p for p in fake_db.docs if p.startswith("page_cache/")]:
            del fake_db.docs[path]

        context = await retrieval.retrieve_context("tenant-a", "pricing plans")

        assert "pricing plans start at 10 dollars" in context.text
        assert await cache.get("https://example.com/pricing") is not None

    async def test_unfetchable_pages_are_skipped(self, crawled, sample_site, retrieval, fake_db):
        for path in [p for p in fake_db.docs if p.startswith("page_cache/")]:
            del fake_db.docs[path]
        sample_site.pages["/pricing"] = (404, "gone")

        context = await retrieval.retrieve_context("tenant-a", "pricing plans")

        assert context.is_empty
        assert context.sources == []

    async def test_no_matches_gives_empty_context(self, crawled, retrieval):
        context = await retrieval.retrieve_context("tenant-a", "submarine warranty")
        assert context.is_empty

    async def test_stopword_only_query(self, crawled, retrieval):
        assert (await retrieval.retrieve_context("tenant-a", "what is the")).is_empty

    async def test_other_tenants_see_nothing(self, crawled, retrieval):
        assert (await retrieval.retrieve_context("tenant-b", "pricing plans")).is_empty

    async def test_context_is_capped(self, crawled, retrieval):
        context = await retrieval.retrieve_context("tenant-a", "pricing plans", max_chars=40)
        assert len(context.text) == 40

    async def test_pages_stay_searchable_while_recrawling(self, crawled, retrieval, firestore):
        store = SiteIndexStore(firestore)
        index = await store.start_crawl(crawled.id, "tenant-a", "https://example.com", True)

        during = await retrieval.retrieve_context("tenant-a", "pricing plans")
        await store.fail(index.id, "Failed to fetch https://example.com/: HTTP 500")
        after_failure = await retrieval.retrieve_context("tenant-a", "pricing plans")

        assert index.status == SiteIndexStatus.CRAWLING
        assert "pricing plans start at 10 dollars" in during.text
        assert "pricing plans start at 10 dollars" in after_failure.text

    async def test_sources_only_cite_sections_that_fit(self, crawled, retrieval):
        context = await retrieval.retrieve_context(
            "tenant-a", "acme widgets pricing", max_chars=60
        )

        assert context.text.startswith("--- Acme Widgets ---")
        assert len(context.text) == 60
        assert [s.url for s in context.sources] == ["https://example.com/"]

    async def test_all_sections_cited_when_budget_allows(self, crawled, retrieval):
        context = await retrieval.retrieve_context("tenant-a", "acme widgets pricing")

        assert len(context.sources) == 3
        for source in context.sources:
            assert f"Source: {source.url}" in context.text

    async def test_completed_documents_are_searched(self, document_service, retrieval):
        doc = await document_service.upload_document(
            "tenant-a", b"Our warranty covers two years of repairs.", "warranty.txt", "text/plain"
        )
        await document_service.process_document(doc.id)

        context = await retrieval.retrieve_context("tenant-a", "How long is the warranty?")

        assert "two years of repairs" in context.text
        [source] = context.sources
        assert source.kind == "document"
        assert source.document_id == doc.id
        assert source.title == "warranty.txt"

    async def test_unprocessed_documents_are_not_searched(self, document_service, retrieval):
        await document_service.upload_document(
            "tenant-a", b"Our warranty covers two years.", "warranty.txt", "text/plain"
        )
        assert (await retrieval.retrieve_context("tenant-a", "warranty")).is_empty

    async def test_uploaded_html_is_searched(self, resource_service, retrieval):
        await resource_service.upload_file(
            "tenant-a",
            ResourceKind.RAW_HTML,
            b"<html><body><main><p>Parking is free for visitors.</p></main></body></html>",
            "parking.html",
            "text/html",
        )

        context = await retrieval.retrieve_context("tenant-a", "Is parking free?")

        assert "Parking is free" in context.text
        assert context.sources[0].kind == "resource"

    async def test_best_matches_are_ranked_first(
        self, crawled, document_service, firestore, cache, fetcher
    ):
        doc = await document_service.upload_document(
            "tenant-a", b"Pricing plans, pricing tiers and enterprise plans explained.",
            "pricing.txt", "text/plain",
        )
        await document_service.process_document(doc.id)
        engine = RetrievalEngine(firestore, cache, fetcher, top_n=1)

        context = await engine.retrieve_context("tenant-a", "enterprise pricing plans")

        [source] = context.sources
        assert source.score == 3


class TestAssembler:
    async def test_empty_context_adds_note(self, gemini):
        await ResponseAssembler(gemini).generate(ConversationTurn(message="hi"), ContextBlob())

        call = gemini.calls[0]
        assert call["context"] is None
        assert NO_CONTEXT_NOTE in call["system_prompt"]

    async def test_custom_prompt_and_model(self, gemini):
        turn = ConversationTurn(message="hi", system_prompt="Be brief.", model_id="gemini-test")

        await ResponseAssembler(gemini).generate(turn, ContextBlob(text="--- A ---\nB\n"))

        call = gemini.calls[0]
        assert call["system_prompt"] == "Be brief."
        assert call["context"] == "--- A ---\nB\n"
        assert call["model_id"] == "gemini-test"

    async def test_model_errors_become_generation_errors(self, gemini):
        gemini.fail_with = TimeoutError("deadline exceeded")
        with pytest.raises(GenerationError):
            await ResponseAssembler(gemini).generate(ConversationTurn(message="hi"), ContextBlob())

    async def test_empty_reply_is_an_error(self, gemini):
        gemini.reply = "  "
        with pytest.raises(GenerationError):
            await ResponseAssembler(gemini).generate(ConversationTurn(message="hi"), ContextBlob())


class TestChatAPI:
    async def test_answer_uses_crawled_context(self, crawled, client, tenant_headers, gemini):
        response = client.post(
            "/api/tenants/tenant-a/chat",
            json={"message": "What pricing plans do you offer?"},
            headers=tenant_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == gemini.reply
        assert body["session_id"]
        assert body["sources"][0]["url"] == "https://example.com/pricing"
        assert "pricing plans start at 10 dollars" in gemini.calls[0]["context"]

    def test_session_history_is_passed_to_the_model(self, client, tenant_headers, gemini):
        first = client.post(
            "/api/tenants/tenant-a/chat", json={"message": "Hello"}, headers=tenant_headers
        ).json()

        client.post(
            "/api/tenants/tenant-a/chat",
            json={"message": "And then?", "session_id": first["session_id"]},
            headers=tenant_headers,
        )

        history = gemini.calls[1]["history"]
        assert {"role": "user", "content": "Hello"} in history
        assert {"role": "assistant", "content": gemini.reply} in history

    async def test_generation_failure_keeps_user_message(
        self, client, tenant_headers, gemini, firestore
    ):
        gemini.fail_with = RuntimeError("quota exceeded")

        response = client.post(
            "/api/tenants/tenant-a/chat",
            json={"message": "Are you open on Sunday?", "session_id": "s-1"},
            headers=tenant_headers,
        )

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to generate a response. Please try again."
        conversation = await firestore.get_conversation_by_session("tenant-a", "s-1")
        messages = await firestore.get_messages(conversation["id"])
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "Are you open on Sunday?")
        ]

    def test_sessions_are_tenant_scoped(self, client, gemini):
        client.post(
            "/api/tenants/tenant-a/chat",
            json={"message": "Secret question", "session_id": "shared"},
            headers={"X-Tenant-Id": "tenant-a"},
        )
        client.post(
            "/api/tenants/tenant-b/chat",
            json={"message": "Hi", "session_id": "shared"},
            headers={"X-Tenant-Id": "tenant-b"},
        )

        assert gemini.calls[1]["history"] is None

    def test_empty_message_is_rejected(self, client, tenant_headers):
        response = client.post(
            "/api/tenants/tenant-a/chat", json={"message": ""}, headers=tenant_headers
        )
        assert response.status_code == 422


class TestConversationMemory:
    async def test_new_session_gets_an_id_and_no_history(self, firestore):
        session = await ConversationMemory(firestore).open_session("tenant-a")

        assert session.session_id
        assert session.history == []

    async def test_history_is_limited_to_recent_turns(self, firestore):
        memory = ConversationMemory(firestore, history_limit=2)
        session = await memory.open_session("tenant-a", "s-1")
        await memory.record_question(session, "first")
        await memory.record_answer(session, "reply", [])
        await memory.record_question(session, "second")

        resumed = await memory.open_session("tenant-a", "s-1")

        assert resumed.conversation_id == session.conversation_id
        assert len(resumed.history) == 2
        assert {turn["role"] for turn in resumed.history} <= {"user", "assistant"}
