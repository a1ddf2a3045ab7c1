"""
Prompt templates for grading, question generation and remediation.
"""

SEMANTIC_GRADER_SYSTEM = (
    "You are an automated grader. Compare a student's short answer with the "
    "reference answer(s) using semantic equivalence (paraphrase detection), "
    "not surface matching. Respond with a single JSON object and nothing else."
)

SEMANTIC_GRADER_USER = """Return a JSON object:
{{
  "similarity": 0.0-1.0,
  "isCorrect": true|false,
  "explanation": "short explanation how the student's answer maps to the reference",
  "confidence": 0.0-1.0
}}
Rules:
- If similarity >= 0.75 then isCorrect is true
- Keep explanation concise (<= 60 words)

Student Answer: "{student_answer}"
Reference Answer(s): {references}
{context_line}"""


QUESTION_GENERATOR_SYSTEM = (
    "You are an expert assessment author. You write varied, unambiguous quiz "
    "questions and respond only with JSON."
)

QUESTION_GENERATOR_USER = """Generate {count} questions for the topic "{topic}".
Difficulty mix: {easy} easy, {medium} medium, {hard} hard.

Return a JSON object {{"items": [...]}} where each item has:
- id: unique seed id, format "seed_{seed}_N"
- type: one of "mcq", "fill_blank", "short_answer", "match", "reorder" (vary the types)
- question: the question text
- choices:
  * mcq: 4 option strings
  * fill_blank / short_answer: []
  * match: the left-hand items to match
  * reorder: the items to put in order
- answer:
  * mcq: the correct choice string
  * fill_blank: the missing word or phrase
  * short_answer: a string or list of acceptable answers
  * match: list of [key, value] pairs, e.g. [["Term A", "Definition 1"], ["Term B", "Definition 2"]]
  * reorder: list of items in the correct sequence
- explanation: concise explanation
- difficulty: 1-5 (easy 1-2, medium 2-3, hard 4-5)
- bloom: one of remember, understand, apply, analyze, evaluate, create
- topics: list containing the topic name
- skills: list of skills tested
- hints: up to 2 hints"""


ASSESSMENT_GENERATOR_USER = """Generate an assessment for topic "{topic}" with {count} questions.
Include variety: at least one each of mcq, fill_blank, short_answer, match and reorder
where the count allows, distributing the rest across these types.

Return a JSON object:
{{
  "assessmentTitle": "...",
  "topic": "{topic}",
  "items": [ ... ]
}}
Each entry of "items" follows this schema:
- id, type, question, choices, answer, explanation, difficulty (1-5), bloom, skills, hints
- mcq needs 3-5 choices and a string answer that is one of them
- match answers are [key, value] pairs; reorder answers list the items in order"""


REMEDIATION_SYSTEM = (
    "You are an encouraging, specific educational tutor. Respond only with JSON."
)

REMEDIATION_USER = """A student made {count} mistake(s) in a quiz across these topics: {topics}.

Mistakes made:
{mistakes}

Return a JSON object:
{{
  "remediation": "a personalized message (2-3 sentences) summarizing the mistakes",
  "weakTopics": ["topics that need improvement"],
  "recommendations": [
    {{
      "topic": "topic name",
      "action": "specific action to improve (1-2 sentences)",
      "resources": ["learning resources or topics to review"],
      "practiceSuggestions": ["specific practice recommendations"]
    }}
  ],
  "nextSteps": ["actionable next steps"]
}}"""
