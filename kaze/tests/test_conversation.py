"""Tests for the conversation orchestrator (fake providers and engines)."""
import asyncio

import pytest

from conftest import TOKYO, FakeAdvisor, FakeLocation, FakeWeather, settle
from core.conversation import INIT_FAILURE_TEMPLATE, REPLY_FAILURE_TEXT, VOICE_ON_TEXT
from core.errors import LocationError, LocationErrorKind, WeatherError, WeatherErrorKind
from core.state import Sender
from speech.input import RecognitionSegment


class TestInitialization:
    @pytest.mark.asyncio
    async def test_tokyo_startup(self, make_orchestrator):
        weather = FakeWeather()
        advisor = FakeAdvisor()
        orch = make_orchestrator(weather=weather, advisor=advisor)

        await orch.initialize()

        state = orch.state
        assert weather.calls == [(35.0, 139.0)]
        assert advisor.initial_calls == [TOKYO]
        assert len(state.messages) == 1
        message = state.messages[0]
        assert message.sender == Sender.ASSISTANT
        assert message.text == "It's 22°C and clear in Tokyo..."
        assert state.latest_assistant_message is message
        assert state.weather_snapshot.place_name == "Tokyo"
        assert not state.is_loading

    @pytest.mark.asyncio
    async def test_permission_denied(self, make_orchestrator):
        weather = FakeWeather()
        advisor = FakeAdvisor()
        location = FakeLocation(error=LocationError(LocationErrorKind.PERMISSION_DENIED))
        orch = make_orchestrator(location=location, weather=weather, advisor=advisor)

        await orch.initialize()

        state = orch.state
        assert len(state.messages) == 1
        assert state.messages[0].sender == Sender.ASSISTANT
        assert "Location access was not permitted." in state.messages[0].text
        assert state.weather_snapshot is None
        assert state.location_error.kind == LocationErrorKind.PERMISSION_DENIED
        assert weather.calls == []
        assert advisor.initial_calls == []
        assert not state.is_loading

    @pytest.mark.asyncio
    async def test_weather_failure_uses_same_template(self, make_orchestrator):
        advisor = FakeAdvisor()
        weather = FakeWeather(error=WeatherError(WeatherErrorKind.NETWORK))
        orch = make_orchestrator(weather=weather, advisor=advisor)

        await orch.initialize()

        expected = INIT_FAILURE_TEMPLATE.format(error="Failed to fetch weather information.")
        assert [m.text for m in orch.state.messages] == [expected]
        assert orch.state.location_error is None
        assert advisor.initial_calls == []

    @pytest.mark.asyncio
    async def test_loading_while_outstanding(self, make_orchestrator):
        gate = asyncio.Event()
        orch = make_orchestrator(location=FakeLocation(gate=gate))

        task = asyncio.create_task(orch.initialize())
        await asyncio.sleep(0)
        assert orch.state.is_loading

        gate.set()
        await task
        assert not orch.state.is_loading

    @pytest.mark.asyncio
    async def test_runs_once(self, make_orchestrator):
        location = FakeLocation()
        orch = make_orchestrator(location=location)

        await orch.initialize()
        await orch.initialize()

        assert location.calls == 1
        assert len(orch.state.messages) == 1

    @pytest.mark.asyncio
    async def test_initial_advice_spoken(self, make_orchestrator, synthesis):
        orch = make_orchestrator()

        await orch.initialize()
        assert orch.state.has_spoken_current_message
        await settle(orch)

        assert synthesis.texts == ["It's 22°C and clear in Tokyo..."]

    @pytest.mark.asyncio
    async def test_spoken_once_output_becomes_ready(self, make_orchestrator, synthesis):
        orch = make_orchestrator(attach=False)

        await orch.initialize()
        await settle(orch)
        assert synthesis.spoken == []
        assert not orch.state.has_spoken_current_message

        orch.speech_output.attach()
        assert orch.state.has_spoken_current_message
        await settle(orch)

        assert synthesis.texts == ["It's 22°C and clear in Tokyo..."]


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_user_then_assistant(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.initialize()

        reply = await orch.send_message("What should I wear?")

        messages = orch.state.messages
        assert [m.sender for m in messages] == [Sender.ASSISTANT, Sender.USER, Sender.ASSISTANT]
        assert messages[1].text == "What should I wear?"
        assert reply is messages[2]
        assert reply.text == "Wear a light jacket."
        ids = [m.id for m in messages]
        assert ids == sorted(ids) and len(set(ids)) == len(ids)
        assert orch.state.latest_assistant_message_id == reply.id
        assert not orch.state.is_loading

    @pytest.mark.asyncio
    async def test_ids_strictly_increase(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.initialize()
        for text in ("one", "two", "three"):
            await orch.send_message(text)

        ids = [m.id for m in orch.state.messages]
        assert all(a < b for a, b in zip(ids, ids[1:]))
        assert len(ids) == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_is_ignored(self, make_orchestrator, text):
        advisor = FakeAdvisor()
        orch = make_orchestrator(advisor=advisor)

        assert await orch.send_message(text) is None
        assert orch.state.messages == []
        assert advisor.reply_calls == []

    @pytest.mark.asyncio
    async def test_ignored_while_loading(self, make_orchestrator):
        advisor = FakeAdvisor()
        advisor.gate = asyncio.Event()
        orch = make_orchestrator(advisor=advisor)

        first = asyncio.create_task(orch.send_message("first"))
        await asyncio.sleep(0)
        assert orch.state.is_loading

        assert await orch.send_message("second") is None
        assert len(orch.state.messages) == 1

        advisor.gate.set()
        await first
        assert [m.text for m in orch.state.messages] == ["first", "Wear a light jacket."]
        assert len(advisor.reply_calls) == 1

    @pytest.mark.asyncio
    async def test_history_is_prior_messages(self, make_orchestrator):
        advisor = FakeAdvisor()
        orch = make_orchestrator(advisor=advisor)
        orch.state.weather_snapshot = TOKYO
        await orch.send_message("Hello")
        prior = list(orch.state.messages)
        assert len(prior) == 2

        await orch.send_message("What should I wear?")

        text, snapshot, history = advisor.reply_calls[-1]
        assert text == "What should I wear?"
        assert snapshot == TOKYO
        assert history == prior

    @pytest.mark.asyncio
    async def test_history_limited_to_four(self, make_orchestrator):
        advisor = FakeAdvisor()
        orch = make_orchestrator(advisor=advisor)
        await orch.initialize()
        for i in range(5):
            await orch.send_message(f"question {i}")
        assert len(orch.state.messages) == 11

        await orch.send_message("last")

        history = advisor.reply_calls[-1][2]
        assert history == orch.state.messages[7:11]
        assert [m.sender for m in history] == [
            Sender.USER, Sender.ASSISTANT, Sender.USER, Sender.ASSISTANT,
        ]

    @pytest.mark.asyncio
    async def test_sends_pending_input_and_clears_it(self, make_orchestrator, recognition):
        orch = make_orchestrator()
        orch.start_listening()
        recognition.listener.handle_result([RecognitionSegment("is it cold", is_final=True)])
        assert orch.state.pending_input_text == "is it cold"

        await orch.send_message()

        assert orch.state.messages[0].text == "is it cold"
        assert orch.state.pending_input_text == ""
        assert orch.speech_input.transcript == ""

    @pytest.mark.asyncio
    async def test_failure_appends_error_message(self, make_orchestrator, synthesis):
        advisor = FakeAdvisor(error=RuntimeError("backend exploded"))
        orch = make_orchestrator(advisor=advisor)

        reply = await orch.send_message("hi")
        await settle(orch)

        assert reply.text == REPLY_FAILURE_TEXT
        assert orch.state.latest_assistant_message is reply
        assert not orch.state.is_loading
        assert synthesis.texts == [REPLY_FAILURE_TEXT]

    @pytest.mark.asyncio
    async def test_reply_spoken(self, make_orchestrator, synthesis):
        orch = make_orchestrator()
        await orch.initialize()
        await orch.send_message("hi")
        await settle(orch)

        assert synthesis.texts[-1] == "Wear a light jacket."


class TestVoice:
    @pytest.mark.asyncio
    async def test_disabled_never_speaks(self, make_orchestrator, synthesis):
        orch = make_orchestrator(voice_enabled=False)

        await orch.initialize()
        await orch.send_message("hi")
        await orch.send_message("again")
        await settle(orch)

        assert synthesis.spoken == []

    @pytest.mark.asyncio
    async def test_guard_false_until_scheduled(self, make_orchestrator):
        orch = make_orchestrator(attach=False)
        await orch.initialize()
        assert not orch.state.has_spoken_current_message

        await orch.send_message("hi")
        assert not orch.state.has_spoken_current_message

    @pytest.mark.asyncio
    async def test_speaks_once_per_message(self, make_orchestrator, synthesis):
        orch = make_orchestrator()
        await orch.initialize()
        await settle(orch)

        utterance = synthesis.spoken[0]
        utterance.on_start()
        assert orch.speech_output.speaking
        utterance.on_end()
        await settle(orch)

        assert synthesis.texts == ["It's 22°C and clear in Tokyo..."]

    @pytest.mark.asyncio
    async def test_toggle_off_on_respeaks_once(self, make_orchestrator, synthesis):
        orch = make_orchestrator()
        await orch.initialize()
        await settle(orch)

        assert orch.toggle_voice() is False
        assert orch.toggle_voice() is True
        await settle(orch)

        assert synthesis.texts == ["It's 22°C and clear in Tokyo..."] * 2

    @pytest.mark.asyncio
    async def test_toggle_on_without_message(self, make_orchestrator, synthesis):
        orch = make_orchestrator(voice_enabled=False)

        orch.toggle_voice()
        await settle(orch)

        assert synthesis.texts == [VOICE_ON_TEXT]

    @pytest.mark.asyncio
    async def test_message_while_disabled_spoken_on_enable(self, make_orchestrator, synthesis):
        orch = make_orchestrator(voice_enabled=False)
        await orch.initialize()
        await settle(orch)
        assert not orch.state.has_spoken_current_message

        orch.toggle_voice()
        await settle(orch)

        assert synthesis.texts == ["It's 22°C and clear in Tokyo..."]

    @pytest.mark.asyncio
    async def test_toggle_off_stops_speech(self, make_orchestrator, synthesis):
        orch = make_orchestrator()
        await orch.initialize()
        await settle(orch)
        synthesis.spoken[0].on_start()

        orch.toggle_voice()

        assert not orch.speech_output.speaking
        assert synthesis.cancels >= 2

    @pytest.mark.asyncio
    async def test_toggle_off_cancels_scheduled_speech(self, make_orchestrator, synthesis):
        orch = make_orchestrator(initial_speak_delay=0.05)
        await orch.initialize()

        orch.toggle_voice()
        await asyncio.sleep(0.1)
        await settle(orch)

        assert synthesis.spoken == []

    @pytest.mark.asyncio
    async def test_older_message_not_spoken_after_newer(self, make_orchestrator, synthesis):
        orch = make_orchestrator(initial_speak_delay=0.05, reply_speak_delay=0)
        await orch.initialize()

        reply = await orch.send_message("What should I wear?")
        await asyncio.sleep(0.1)
        await settle(orch)

        assert synthesis.texts == [reply.text]
        assert orch.state.latest_assistant_message is reply

    @pytest.mark.asyncio
    async def test_voice_on_notice_skipped_once_message_arrives(self, make_orchestrator, synthesis):
        orch = make_orchestrator(voice_enabled=False, speak_delay=0.05)
        orch.toggle_voice()

        await orch.initialize()
        await asyncio.sleep(0.1)
        await settle(orch)

        assert synthesis.texts == ["It's 22°C and clear in Tokyo..."]

    @pytest.mark.asyncio
    async def test_start_listening_stops_speech(self, make_orchestrator, synthesis, recognition):
        orch = make_orchestrator()
        await orch.initialize()
        await settle(orch)
        synthesis.spoken[0].on_start()

        orch.start_listening()

        assert not orch.speech_output.speaking
        assert orch.speech_input.listening
        assert recognition.starts == 1

    @pytest.mark.asyncio
    async def test_unsupported_output_never_speaks(self, make_orchestrator, synthesis):
        synthesis.supported = False
        orch = make_orchestrator()

        await orch.initialize()
        orch.toggle_voice()
        orch.toggle_voice()
        await settle(orch)

        assert synthesis.spoken == []


class TestSpeechInputIntegration:
    @pytest.mark.asyncio
    async def test_auto_send_transcript(self, make_orchestrator, recognition):
        orch = make_orchestrator(auto_send_transcript=True)
        orch.start_listening()
        recognition.listener.handle_result([RecognitionSegment("umbrella today?", is_final=True)])
        orch.stop_listening()
        await settle(orch)

        assert [m.text for m in orch.state.messages] == ["umbrella today?", "Wear a light jacket."]

    @pytest.mark.asyncio
    async def test_permission_notice_collected(self, make_orchestrator, recognition):
        orch = make_orchestrator()
        orch.start_listening()
        recognition.listener.handle_error("not-allowed")

        notices = orch.state.drain_notices()
        assert len(notices) == 1
        assert notices[0].level.value == "blocking"
        assert orch.state.notices == []
