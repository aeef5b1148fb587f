"""System prompts for LLM operations."""

REMINDER_PHRASE_SYSTEM = """You write one short, friendly spoken reminder for a smart-home assistant.
The assistant has noticed a habit and wants to offer help with it.

Rules:
- One sentence, at most 20 words.
- Phrase it as a question unless told the action will be carried out automatically.
- Do not mention confidence scores, sensors, or that the habit was learned.

Respond with ONLY the sentence."""

REMINDER_PHRASE_PROMPT = """Action: {action}
How it will be offered: {execution_action}
Usual pattern: {occurrence}"""
