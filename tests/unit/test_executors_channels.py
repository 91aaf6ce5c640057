"""
Unit tests for the farm, WhatsApp and chat model executors.
"""

import pytest

from chatflow_engine.core.models import NodeStatus
from chatflow_engine.executors.ai import chat_model
from chatflow_engine.executors.base import ExecutionContext
from chatflow_engine.executors.farm import performance_calc, performance_metrics, report_generator
from chatflow_engine.executors.whatsapp import normalize_whatsapp_payload, whatsapp_send, whatsapp_trigger
from chatflow_engine.services import LlmServiceError, MessagingError, Services


# ==================== Performance ====================


class TestPerformanceCalc:
    """Tests for process.performanceCalc."""

    def test_metrics(self):
        metrics = performance_metrics(feed=3000, avg_weight=2000, mortality=50, population_start=1000, days=35)

        assert metrics["FCR"] == pytest.approx(3000 / 1900)
        assert metrics["ADG"] == pytest.approx(2000 / 35)
        assert metrics["mortality_pct"] == 5

    def test_no_weight_gain(self):
        """Test FCR is undefined while no weight was gained."""
        metrics = performance_metrics(feed=100, avg_weight=0, mortality=0, population_start=0, days=1)
        assert metrics == {"FCR": None, "ADG": 0, "mortality_pct": 0}

    @pytest.mark.asyncio
    async def test_reads_payload_then_memory(self, make_context):
        context = make_context(
            payload={"feed": 3000, "avg_weight": "2000", "days": 35},
            memory={"mortality": 50, "population_start": 1000, "feed": 1},
        )
        result = await performance_calc(context, {})

        assert result.status == NodeStatus.SUCCESS
        assert result.data["FCR"] == pytest.approx(3000 / 1900)
        assert result.data["mortality_pct"] == 5
        assert result.updated_memory["lastPerformance"] == result.data
        assert result.updated_memory["ADG"] == result.data["ADG"]

    @pytest.mark.asyncio
    async def test_missing_days_defaults_to_one(self, make_context):
        result = await performance_calc(make_context(payload={"avg_weight": 40, "days": 0}), {})
        assert result.data["ADG"] == 40


class TestReportGenerator:
    """Tests for report.generate."""

    @pytest.fixture
    def harvest_memory(self):
        return {
            "farmId": "F1",
            "cycleId": "C7",
            "farmName": "Farm Sari",
            "owner_phone": "62811",
            "lastPerformance": {"FCR": 1.6, "ADG": 55, "mortality_pct": 4},
        }

    @pytest.mark.asyncio
    async def test_report_and_notification(self, make_context, sender, harvest_memory):
        context = make_context(memory=harvest_memory, payload={"qty": 950, "total_weight": 1900})
        result = await report_generator(context, {"outputs": ["pdf", "whatsapp"]})

        assert result.status == NodeStatus.SUCCESS
        assert result.data["reportUrl"] == "/reports/F1_C7_harvest_report.pdf"
        assert result.data["harvestData"] == {
            "farmId": "F1",
            "cycleId": "C7",
            "qty": 950,
            "total_weight": 1900,
            "FCR": 1.6,
            "ADG": 55,
            "mortality_pct": 4,
        }
        assert "Laporan Panen - Farm Sari" in result.data["summary"]
        assert "FCR: 1.6" in result.data["summary"]
        assert "Lihat laporan lengkap: /reports/F1_C7_harvest_report.pdf" in result.data["summary"]
        assert result.data["notified"] is True
        assert sender.sent[0]["to"] == "62811"
        assert sender.sent[0]["body"] == result.data["summary"]
        assert result.updated_memory["lastReportUrl"] == result.data["reportUrl"]

    @pytest.mark.asyncio
    async def test_pdf_only_sends_nothing(self, make_context, sender, harvest_memory):
        result = await report_generator(
            make_context(memory=harvest_memory), {"reportBaseUrl": "https://files.test/r/"}
        )

        assert result.data["reportUrl"] == "https://files.test/r/F1_C7_harvest_report.pdf"
        assert result.data["notified"] is False
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_defaults_without_ids(self):
        result = await report_generator(ExecutionContext(services=Services()), {"outputs": ["whatsapp"]})

        assert result.data["harvestData"]["farmId"] == "unknown"
        assert result.data["harvestData"]["cycleId"].isdigit()
        assert result.data["notified"] is False

    @pytest.mark.asyncio
    async def test_notification_failure(self, make_context, sender, harvest_memory):
        async def failing_send(*args, **kwargs):
            raise MessagingError("gateway down")

        sender.send = failing_send
        result = await report_generator(make_context(memory=harvest_memory), {"outputs": ["whatsapp"]})

        assert result.status == NodeStatus.ERROR
        assert result.error.code == "REPORT_GEN_ERROR"


# ==================== WhatsApp ====================


class TestWhatsAppTrigger:
    """Tests for whatsapp.trigger."""

    def test_normalize_meta(self):
        payload = {"from": "62811", "text": {"body": "halo"}, "id": "wamid.1", "timestamp": "1700000000"}

        assert normalize_whatsapp_payload(payload, "meta") == {
            "user_id": "62811",
            "message": "halo",
            "media": None,
            "message_id": "wamid.1",
            "timestamp": "1700000000",
        }

    def test_normalize_twilio(self):
        payload = {"From": "whatsapp:+62811", "Body": "ya", "MessageSid": "SM1", "MediaUrl0": "https://m.test/1"}
        normalized = normalize_whatsapp_payload(payload, "twilio")

        assert normalized["user_id"] == "whatsapp:+62811"
        assert normalized["message"] == "ya"
        assert normalized["media"] == "https://m.test/1"
        assert normalized["message_id"] == "SM1"
        assert normalized["timestamp"]

    def test_normalize_generic(self):
        normalized = normalize_whatsapp_payload({"from": "62812", "body": "cek", "id": "m9"}, None)

        assert normalized["user_id"] == "62812"
        assert normalized["message"] == "cek"
        assert normalized["message_id"] == "m9"

    @pytest.mark.asyncio
    async def test_trigger_reads_provider_payload(self, make_context):
        context = make_context(payload={"providerPayload": {"from": "62811", "text": {"body": "halo"}, "id": "w1"}})
        result = await whatsapp_trigger(context, {"provider": "meta"})

        assert result.status == NodeStatus.SUCCESS
        assert result.data["message"] == "halo"

    @pytest.mark.asyncio
    async def test_dedupe(self, make_context, store):
        """Test a redelivered message id is rejected inside the window."""
        config = {"provider": "meta", "dedupeWindowSec": 60}
        payload = {"providerPayload": {"from": "62811", "id": "wamid.7"}}

        first = await whatsapp_trigger(make_context(payload=payload), config)
        second = await whatsapp_trigger(make_context(payload=payload), config)

        assert first.status == NodeStatus.SUCCESS
        assert second.status == NodeStatus.ERROR
        assert second.error.code == "DEDUP"
        assert "whatsapp:dedupe:wamid.7" in store.snapshot()

    @pytest.mark.asyncio
    async def test_dedupe_window_expired(self, make_context, store):
        await store.set("whatsapp:dedupe:wamid.8", 0)
        payload = {"providerPayload": {"from": "62811", "id": "wamid.8"}}

        result = await whatsapp_trigger(make_context(payload=payload), {"provider": "meta", "dedupeWindowSec": 60})

        assert result.status == NodeStatus.SUCCESS


class TestWhatsAppSend:
    """Tests for whatsapp.send."""

    @pytest.mark.asyncio
    async def test_send_text(self, make_context, sender):
        context = make_context(payload={"user_id": "62811"}, vars={"nama": "Sari"})
        result = await whatsapp_send(context, {"text": "Halo {{nama}} ({{payload.user_id}}) {{ghost}}", "provider": "meta"})

        assert result.status == NodeStatus.SUCCESS
        assert result.data["sent"] is True
        assert result.data["userId"] == "62811"
        assert sender.sent == [
            {"channel": "whatsapp", "to": "62811", "body": "Halo Sari (62811) {{ghost}}", "provider": "meta"}
        ]

    @pytest.mark.asyncio
    async def test_template_message(self, make_context, sender):
        config = {"text": "x", "messageType": "template", "templateId": "DAILY_REMINDER"}
        await whatsapp_send(make_context(payload={"from": "62812"}), config)

        assert sender.sent[0]["templateId"] == "DAILY_REMINDER"
        assert sender.sent[0]["to"] == "62812"

    @pytest.mark.asyncio
    async def test_missing_user(self, make_context, sender):
        result = await whatsapp_send(make_context(), {"text": "x"})

        assert result.status == NodeStatus.ERROR
        assert result.next == "error"
        assert result.data == {"sent": False, "error": "No user_id found in payload"}
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_retry_on_fail(self, make_context, sender):
        """Test a failed delivery becomes a transient retry carrying the error."""

        async def failing_send(*args, **kwargs):
            raise MessagingError("gateway down")

        sender.send = failing_send
        result = await whatsapp_send(make_context(payload={"user_id": "62811"}), {"text": "x", "retryOnFail": True})

        assert result.status == NodeStatus.RETRY
        assert result.error.code == "SEND_ERROR"

    @pytest.mark.asyncio
    async def test_no_sender(self):
        result = await whatsapp_send(ExecutionContext(services=Services()), {"text": "x"})
        assert result.error.code == "NO_SERVICE"


# ==================== Chat Model ====================


class TestChatModel:
    """Tests for ai.chatModel."""

    @pytest.mark.asyncio
    async def test_json_answer(self, make_context, llm):
        llm.contents = ['{"agent_response": "Berapa umur ayam?", "next_field": "umur"}']
        config = {"model": "gpt-x", "promptTemplate": "Farm {{memory.farm}} pesan {{payload.message}}"}
        result = await chat_model(make_context(payload={"message": "halo"}, memory={"farm": "F1"}), config)

        assert result.status == NodeStatus.SUCCESS
        assert result.data == {"agent_response": "Berapa umur ayam?", "next_field": "umur"}
        assert llm.calls[0]["messages"] == [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "Farm F1 pesan halo"},
        ]
        assert llm.calls[0]["model"] == "gpt-x"

    @pytest.mark.asyncio
    async def test_prose_answer_wrapped(self, make_context, llm):
        llm.contents = ["Halo, ada yang bisa dibantu?"]
        result = await chat_model(make_context(), {"promptTemplate": "hi"})

        assert result.data == {
            "agent_response": "Halo, ada yang bisa dibantu?",
            "field_detected": None,
            "value": None,
            "next_field": None,
            "status": "in_progress",
            "confidence": 0.5,
        }

    @pytest.mark.asyncio
    async def test_llm_error(self, make_context, llm):
        llm.contents = [LlmServiceError("overloaded")]
        result = await chat_model(make_context(), {})

        assert result.status == NodeStatus.ERROR
        assert result.error.code == "LLM_ERROR"

    @pytest.mark.asyncio
    async def test_no_llm(self):
        result = await chat_model(ExecutionContext(services=Services()), {})
        assert result.error.code == "NO_LLM"
