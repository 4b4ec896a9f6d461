"""
JSON response schemas and prompt text for the grading model.

The handwriting prompts describe the stroke-order markers drawn by
annotate.py (green numbered start circles, red end dots). The two must
stay in sync: the model cannot infer stroke order any other way.
"""

CHARACTER_SCHEMA = """
Return ONLY a JSON object:
{
  "char": "The Chinese character (one Simplified Chinese character)",
  "pinyin": "Pinyin with tone marks, e.g. wǒ",
  "meaning": "Concise English meaning"
}
"""

SENTENCE_SCHEMA = """
Return ONLY a JSON object:
{
  "text": "The full sentence in Simplified Chinese (4-8 characters)",
  "pinyin": "Full sentence pinyin with tone marks",
  "meaning": "English translation of the sentence",
  "breakdown": [
    {"char": "你", "pinyin": "nǐ", "meaning": "you"},
    ... one object per character in the sentence, in order ...
  ]
}
Only Chinese characters go into "breakdown" - no punctuation.
"""

EVALUATION_SCHEMA = """
Return ONLY a JSON object:
{
  "isCorrect": true | false,
  "score": 0-100,
  "feedback": "Specific feedback on shape or stroke order (max 15 words)"
}
"""

AUDIO_EVALUATION_SCHEMA = """
Return ONLY a JSON object:
{
  "isCorrect": true | false,       // true if the sentence is clearly understood
  "score": 0-100,                  // clarity and tones
  "feedback": "General encouragement or critique (max 15 words)",
  "pronunciationTips": "Specific tips on tones or sounds to improve",
  "heardPinyin": "Pinyin of what the recording actually sounded like"
}
"""

STROKE_MARKER_LEGEND = """
CRITICAL - STROKE ORDER INDICATORS:
The image has generated annotations showing the user's stroke order:
1. GREEN CIRCLES with NUMBERS (1, 2, 3...) mark the START of each stroke.
2. RED DOTS mark the END of each stroke. A stroke without a red dot was a single tap.
"""


def handwriting_prompt(target_char: str, stroke_count: int) -> str:
    return (
        f'Analyze this handwritten image. The user is attempting to write the Chinese character "{target_char}".\n'
        f"The user used {stroke_count} strokes.\n"
        f"{STROKE_MARKER_LEGEND}\n"
        "Please evaluate:\n"
        f'1. Is the handwriting recognizable as "{target_char}"?\n'
        "2. Is the stroke count roughly correct?\n"
        "3. Using the numbered start points and red end points, does the stroke order follow "
        "the standard rules? (Top to bottom, left to right, outside before inside.)\n\n"
        "Ignore minor aesthetic imperfections, but penalize incorrect stroke order if the "
        "numbers clearly show a violation of standard rules. Deduct points for wrong stroke order.\n"
        "isCorrect is true only if the character is legible, the stroke count matches and the "
        "stroke order looks reasonably correct.\n"
        f"{EVALUATION_SCHEMA}"
    )


def appeal_prompt(target_char: str, original_feedback: str, justification: str) -> str:
    return (
        f'The user is appealing a grading result for the Chinese character "{target_char}".\n\n'
        f'Original Feedback: "{original_feedback}"\n'
        f'User\'s Explanation: "{justification}"\n'
        f"{STROKE_MARKER_LEGEND}\n"
        "Task:\n"
        "Review the image and the user's explanation. If the explanation implies a valid "
        "alternative stroke order, a stylistic choice (e.g. cursive/running script), or if the "
        "original grading was simply too harsh about the geometry, GRANT the appeal "
        "(isCorrect true, score above 80). If the character is still fundamentally wrong or "
        "unrecognizable, DENY the appeal (isCorrect false, keep the score low). "
        "feedback is the reason for the decision.\n"
        f"{EVALUATION_SCHEMA}"
    )


def pronunciation_prompt(target_text: str, target_pinyin: str, transcription: str) -> str:
    return (
        f'The user is attempting to say the Chinese sentence: "{target_text}" ({target_pinyin}).\n'
        f'A speech recognizer transcribed the recording as: "{transcription}"\n\n'
        "Please evaluate:\n"
        "1. Is the pronunciation accurate and understandable?\n"
        "2. Are the tones generally correct?\n"
        "3. What did it actually sound like? Give the pinyin of what was heard; if it was "
        "perfectly correct, return the target pinyin.\n"
        f"{AUDIO_EVALUATION_SCHEMA}"
    )
