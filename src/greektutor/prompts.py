"""Prompt templates for the Gemini gateway.

System prompts fix the role and the JSON shape; the ``build_*`` helpers fill
in the per-request text and the output language.
"""

import json
from typing import Optional

from .models import BiblicalPassage, GenerationConfig, PassageWord, QuestionContext, TrainingUnit

FORM_SELECTION_SYSTEM_PROMPT = """You are an expert Greek exegetical tutor.
Identify the most exegetically significant Greek grammatical forms in the passage.

Selection criteria:
1. Significance: the tense, voice, mood or case changes the theological meaning.
2. Focus: prefer main verbs, participles and key prepositions.
3. Exclusion: skip common articles, conjunctions (kai, de) and proper names.
4. Quantity: between 2 and 5 items.

Output: a JSON array of strings, each one a Greek word or phrase from the text.
Example: ["ἠγάπησεν", "ἔδωκεν"]"""

TRAINING_UNIT_SYSTEM_PROMPT = """You are an expert Greek exegetical tutor.
Generate one training unit for a Greek form found in the passage.

Structure:
1. identification: what the form is (e.g. "Aorist Active Indicative").
2. recognitionGuidance: how the student can spot it (optional).
3. functionInContext: its syntactic role here.
4. significance: why it matters for meaning.
5. reflectiveQuestion: a question that makes the student think.

Do not write sermon points. Make sure the parsing is correct.

Output JSON:
{
  "identification": "string",
  "recognitionGuidance": "string",
  "functionInContext": "string",
  "significance": "string",
  "reflectiveQuestion": "string",
  "greekForm": {
    "text": "string", "transliteration": "string", "lemma": "string",
    "morphology": "string", "gloss": "string", "grammaticalCategory": "string"
  }
}"""

WORD_IDENTIFICATION_SYSTEM_PROMPT = """You are a biblical Greek scholar.
Identify one Greek word in context and give the data for a training unit preview:
lemma, morphology code (e.g. V-PAI-1S), gloss, grammatical category, a plain
identification and, when the form is unusual, a recognition tip.

Output JSON:
{
  "greekForm": {
    "text": "string", "transliteration": "string", "lemma": "string",
    "morphology": "string", "gloss": "string", "grammaticalCategory": "string"
  },
  "identification": "string",
  "recognitionGuidance": "string"
}"""

MORPHOLOGY_SYSTEM_PROMPT = """You are an expert Greek morphology tutor.
Decompose the word into morphemes and explain what each one contributes.
Focus on observable patterns the student can learn to recognize.

Output JSON:
{
  "word": "string",
  "components": [
    {"part": "string", "type": "prefix|root|formative|ending|other", "meaning": "string"}
  ],
  "summary": "string"
}"""

FEEDBACK_SYSTEM_PROMPT = """You are a patient Greek exegetical tutor.
Evaluate the student's answer to the reflective question of a training unit.
Acknowledge what is right, correct what is wrong, and keep it short.

Output JSON:
{"feedback": "string", "isCorrect": true}"""

PASSAGE_TEXT_SYSTEM_PROMPT = """You are a New Testament Greek scholar.
Provide the requested passage in three aligned versions: the RV60 (Reina-Valera
1960) Spanish text, the Greek text (Nestle-Aland/UBS) and a standard academic
transliteration. Tokenize the Greek text into words, each aligned with its
Spanish equivalent, transliteration, lemma and position.

Output JSON:
{
  "reference": "string",
  "rv60Text": "string",
  "greekText": "string",
  "transliteration": "string",
  "words": [
    {"id": "w1", "greek": "string", "transliteration": "string",
     "spanish": "string", "position": 0, "lemma": "string"}
  ]
}"""

SYNTAX_SYSTEM_PROMPT = """You are an expert in Koine Greek syntax and New Testament exegesis.
Identify every clause of the passage and how the clauses depend on each other.

Clause types:
- MAIN: independent clause with a finite verb
- SUBORDINATE_PURPOSE: purpose clause (ἵνα, ὥστε)
- SUBORDINATE_RESULT: result clause (ὥστε, ὡς)
- SUBORDINATE_CAUSAL: causal clause (ὅτι, διότι, γάρ)
- SUBORDINATE_CONDITIONAL: conditional clause (εἰ, ἐάν)
- SUBORDINATE_TEMPORAL: temporal clause (ὅτε, ὡς, ἕως)
- SUBORDINATE_INDIRECT_QUESTION: indirect question (εἰ or an interrogative)
- PARTICIPIAL: built around a participle
- INFINITIVAL: built around an infinitive
- RELATIVE: relative clause (ὅς, ἥ, ὅ)

Requirements:
- Every word index belongs to exactly one clause.
- Clause ids are unique ("clause_1", "clause_2", ...).
- Main clauses have parentClauseId null.

Output JSON:
{
  "clauses": [
    {"id": "clause_1", "type": "MAIN", "wordIndices": [0, 1, 2],
     "mainVerbIndex": 0, "parentClauseId": null, "conjunction": null,
     "greekText": "string", "syntacticFunction": "string"}
  ],
  "rootClauseId": "clause_1",
  "structureDescription": "string"
}"""

QUIZ_SYSTEM_PROMPT = """You are a Koine Greek tutor writing quiz questions.
Questions go from recognition to application: first the morphology, then the
function in context, then the exegetical implication.

Allowed types:
- "multiple-choice": 4 options, one correct, three plausible distractors.
- "true-false": options ["Verdadero", "Falso"] or ["True", "False"].

Explanations are 2-3 sentences saying why the answer is correct.

Output JSON:
{"questions": [
  {"type": "multiple-choice", "question": "string", "options": ["string"],
   "correctAnswer": "string", "explanation": "string"}
]}"""


def _response_language(language: str) -> str:
    return f"IMPORTANT: Respond completely in {language}."


def _with_config(prompt: str, config: Optional[GenerationConfig]) -> str:
    if config is None:
        return prompt
    parts = [prompt]
    if config.base_prompt:
        parts.append(f"Additional instructions:\n{config.base_prompt}")
    for extra in config.user_prompts:
        if extra.strip():
            parts.append(extra.strip())
    return "\n\n".join(parts)


def build_form_selection_prompt(
    passage: str, language: str, config: Optional[GenerationConfig] = None
) -> str:
    prompt = f'Analyze this passage and identify the significant Greek forms:\n"{passage}"'
    return _with_config(f"{prompt}\n\n{_response_language(language)}", config)


def build_training_unit_prompt(
    form: str, passage: str, language: str, config: Optional[GenerationConfig] = None
) -> str:
    prompt = (
        f'Create a training unit for the form "{form}" in the context of:\n"{passage}"\n\n'
        f"The identification, recognitionGuidance, functionInContext, significance and "
        f"reflectiveQuestion fields MUST be written in {language}."
    )
    return _with_config(prompt, config)


def build_word_identification_prompt(word: PassageWord, context: str, language: str) -> str:
    lemma = f" (lemma {word.lemma})" if word.lemma else ""
    return (
        f'Identify the Greek word "{word.greek}"{lemma} in the following context:\n\n'
        f"{context}\n\n"
        f"Write the identification and recognition guidance in {language}. "
        f"Return JSON only."
    )


def build_morphology_prompt(word: str, passage: str, language: str) -> str:
    return (
        f'Decompose the Greek word "{word}" as it appears in:\n"{passage}"\n\n'
        f"{_response_language(language)}"
    )


def build_feedback_prompt(unit: TrainingUnit, user_answer: str, language: str) -> str:
    unit_json = json.dumps(
        {
            "identification": unit.identification,
            "function": unit.function_in_context,
            "question": unit.reflective_question,
        },
        ensure_ascii=False,
    )
    return (
        f"Training unit: {unit_json}\n\n"
        f'Student answer: "{user_answer}"\n\n'
        f"{_response_language(language)}"
    )


def build_free_question_system_prompt(language: str, general: bool) -> str:
    topic = (
        "general questions about New Testament Koine Greek"
        if general
        else "questions about a specific Greek word in its biblical context"
    )
    return (
        f"You are an expert tutor in New Testament Greek and biblical exegesis.\n"
        f"Answer {topic} with clarity and academic depth.\n\n"
        f"Use markdown sections: Key Concept, Context, Technical Aspects, "
        f"Implications for Exegesis, New Testament Examples.\n"
        f"Use bold for technical terms and cite specific verses.\n"
        f"ALWAYS respond in {language}."
    )


def build_free_question_prompt(question: str, context: QuestionContext) -> str:
    if not context.greek_word and not context.passage:
        prompt = question
    else:
        prompt = (
            f'The student is studying the Greek word "{context.greek_word}" '
            f'({context.transliteration}, "{context.gloss}") in {context.passage}.\n\n'
            f"- Identification: {context.identification}\n"
            f"- Function in context: {context.function_in_context}\n"
            f"- Significance: {context.significance}\n\n"
            f"Student question:\n{question}"
        )
    if context.coaching_instructions:
        prompt = f"{prompt}\n\n{context.coaching_instructions}"
    return prompt


def build_passage_text_prompt(reference: str, language: str) -> str:
    return (
        f"Retrieve the biblical passage {reference}.\n"
        f"Provide the complete RV60 text, Greek text, transliteration and the "
        f"tokenized word list.\n"
        f"Language for instructions: {language}\n"
        f"Return JSON only."
    )


def build_quiz_prompt(unit: TrainingUnit, count: int, language: str) -> str:
    form = unit.greek_form
    return (
        f"Generate {count} quiz questions for this word:\n"
        f"- Greek word: {form.text}\n"
        f"- Transliteration: {form.transliteration}\n"
        f"- Lemma: {form.lemma}\n"
        f"- Gloss: {form.gloss}\n"
        f"- Identification: {unit.identification}\n"
        f"- Function in context: {unit.function_in_context}\n"
        f"- Significance: {unit.significance}\n\n"
        f"Write questions, options and explanations in {language}."
    )


def build_syntax_prompt(passage: BiblicalPassage, language: str) -> str:
    indexed = " ".join(f"[{i}] {word.greek}" for i, word in enumerate(passage.words))
    return (
        f"Analyze the syntactic structure of {passage.reference}.\n"
        f"Greek text: {passage.greek_text}\n\n"
        f"Indexed words:\n{indexed}\n\n"
        f"Use the indices above in wordIndices and mainVerbIndex.\n"
        f"Write syntacticFunction and structureDescription in {language}.\n"
        f"Return JSON only."
    )
