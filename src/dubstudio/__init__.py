"""
Dub Studio - headless video localization with burned-in captions.

A pipeline for:
- Transcribing a video's speech into timed captions (OpenAI Whisper, Hugging Face, faster-whisper)
- Translating captions into a target language (GPT or NLLB)
- Synthesizing a dubbed soundtrack (OpenAI, Hugging Face MMS or ElevenLabs TTS)
- Rendering the video with captions drawn on every frame and the chosen audio track
"""

__version__ = "0.1.0"
