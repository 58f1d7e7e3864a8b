from twilio.twiml.voice_response import VoiceResponse

from selaro.state_machine import NO_INPUT_GOODBYE

STEP_URL = "/api/twilio/voice/step"
LANGUAGE = "de-DE"
VOICE = "Polly.Marlene"
GATHER_TIMEOUT = 4


def gather_response(text: str, action: str = STEP_URL) -> str:
    """Say `text` inside a speech Gather; if the caller stays silent, say goodbye and hang up."""
    response = VoiceResponse()
    gather = response.gather(
        input="speech",
        action=action,
        method="POST",
        timeout=GATHER_TIMEOUT,
        speech_timeout="auto",
        language=LANGUAGE,
    )
    gather.say(text, language=LANGUAGE, voice=VOICE)
    response.say(NO_INPUT_GOODBYE, language=LANGUAGE, voice=VOICE)
    response.hangup()
    return str(response)


def say_and_hangup(text: str) -> str:
    response = VoiceResponse()
    response.say(text, language=LANGUAGE, voice=VOICE)
    response.hangup()
    return str(response)
