# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from typing import Any, Final

from jinja2 import Environment

jinja_env = Environment(  # noqa: S701 - not worried about XSS in LLM prompts
    trim_blocks=True,
    lstrip_blocks=True,
)

# Completion arguments used with each template
OPEN_ARGS: Final[dict[str, Any]] = {'max_completion_tokens': 200, 'temperature': 0.7}
TUTOR_ARGS: Final[dict[str, Any]] = {'max_completion_tokens': 500, 'temperature': 0.7}
EVALUATE_ARGS: Final[dict[str, Any]] = {'max_completion_tokens': 2000, 'temperature': 0.3}
MERGE_ARGS: Final[dict[str, Any]] = {'max_completion_tokens': 2000, 'temperature': 0.2}

FALLBACK_GREETING: Final = "Welcome to this learning module. How would you like to begin?"
FALLBACK_REPLY: Final = "I apologize, but I was unable to generate a response. Let's try again."
DEFAULT_TUTOR_PROMPT: Final = "Please share your knowledge about this topic."


#####################
### Session start ###
#####################

open_sys_msg = "You are an AI tutor. Return only the overview and starter question in Markdown format."

open_prompt_tpl = jinja_env.from_string("""\
Create a brief overview (at most 70 words) of this learning module: {{ description }}

Then add one starter question to begin the session. The question should assess the student's baseline understanding.

Format your response in Markdown with:
- Overview section with a brief description
- Question section with your starter question

Use **bold** for emphasis where appropriate.
""")


##################
### Tutor turn ###
##################

tutor_sys_msg_tpl = jinja_env.from_string("""\
You are an AI tutor guiding a student through a learning session.

Consider:
- Lesson plan: {{ description }}
- Chat history: {{ chat_history }}
- Current evaluation: {{ evaluation or "None yet" }}
- Available knowledge: {{ knowledge }}

Given the teacher's lesson plan, which defines the learning and skills objectives, experiential goals and deliverables,
and the pedagogy expected of the AI tutor in guiding student through the learning experience: engage the student to
help them achieve the learning, skills, and experiential goals from the session. Your aim particularly is to help the
student build a deeper level of learning according to Bloom's taxonomy and to answer any question the student poses to
you. If the student asks a question, answering this is your priority. Otherwise, consider that the current evaluation
provides scores in each of the Bloom's taxonomy categories. A student must get an average score of {{ threshold }} across
all categories in order to successfully complete a learning module. So your response to the student should help them
improve their score one category at a time, beginning with {{ categories | join(", then ") }}.
Your response should also build upon the chat history, and reference the available knowledge provided by the teacher.

Guidelines:
1. Be concise (at most 75 words)
2. Ask only ONE question at a time
3. Ensure understanding before moving on
4. Use Markdown formatting
5. Use **bold** for emphasis
6. Break responses into clear sections
""")


##################
### Evaluation ###
##################

rubric_format_tpl = jinja_env.from_string("""\
## Evaluation Results
{% for cat in categories %}
- **{{ cat }}**: x/5
{% endfor %}

### Evidence
{% for cat in categories %}
- **{{ cat }}**: {{ evidence_hint }}
{% endfor %}

**Average Score:** {{ average_hint }}""")

evaluate_prompt_tpl = jinja_env.from_string("""\
You are evaluating a student's response in a learning module.

## Learning Context
{{ description }}

## Recent Exchange
Tutor's question: "{{ tutor_turn }}"

Student's response: "{{ student_turn }}"

## Evaluation Instructions
Evaluate the student's understanding based on Bloom's Taxonomy. Assign a score from 0-5 for each category, where:
- 0 = No evidence
- 1 = Minimal evidence
- 2 = Basic evidence
- 3 = Satisfactory evidence
- 4 = Strong evidence
- 5 = Exemplary evidence

For each category, provide specific evidence from the student's response that justifies your score.

Categories to evaluate:
1. Remembering: Ability to recall facts, terms, or concepts
2. Understanding: Ability to explain ideas or concepts
3. Applying: Ability to use information in new situations
4. Analyzing: Ability to draw connections among ideas
5. Evaluating: Ability to justify a position or decision
6. Creating: Ability to produce new or original work

Format your evaluation exactly as follows:

{{ rubric_format }}

IMPORTANT: Be fair and generous in your evaluation. If the student demonstrates knowledge at any level, they should receive appropriate credit.
""")

merge_prompt_tpl = jinja_env.from_string("""\
I need to merge two evaluations of a student's work. For each category in Bloom's Taxonomy, I want to keep the HIGHER score and its corresponding evidence.

Current evaluation:
{{ current }}

Latest evaluation:
{{ latest }}

Please merge these evaluations following these rules:
1. For each category ({{ categories | join(", ") }}):
   - Compare the scores from both evaluations
   - Keep the HIGHER score and its corresponding evidence
   - If scores are equal, keep the evidence from the latest evaluation as it's more recent

2. Calculate a new average: the mean of the six merged scores, rounded to one decimal place

3. Format the result exactly like this:

{{ rubric_format }}
""")


########################
### Module authoring ###
########################

module_summary_sys_msg = "Create a comprehensive summary of the learning module discussion, organizing the key decisions and specifications into clear sections: Course Context, Learning Objectives, AI Integration, Assessment Strategy, Activities, and Support Mechanisms."

module_report_prompt = """\
Generate a detailed learning module report with the following sections:
1. Module Overview
2. Learning Context & Student Profile
3. Learning Objectives (using Bloom's Taxonomy)
4. AI Integration Strategy
5. Learning Activities & Timeline
6. Assessment Strategy & Rubrics
7. Support & Scaffolding
8. Implementation Guidelines
9. Success Metrics
10. Required Resources"""

DESIGN_ARGS: Final[dict[str, Any]] = {'max_completion_tokens': 2000, 'temperature': 0.7}

module_design_sys_msg = """\
You are an expert AI education assistant working with a teacher to design an AI-integrated, experiential learning module. \
Be supportive and also constructively critical, helping the teacher build the most effective learning experience they can.

At each step of the design:
1. Ask targeted questions about the teacher's plans, only one at a time
2. Offer specific suggestions and alternatives
3. Give examples and best practices
4. Help refine and strengthen their ideas
5. Point out challenges or areas that need more development
6. Suggest ways to improve student engagement and learning outcomes

Guide the discussion through these topics, in whatever order suits the conversation:

1. Course Context & Student Profile: course level, student background, class size, and prerequisites; ways to accommodate diverse backgrounds.
2. Learning Objectives: the knowledge and skills students should gain, and how to make objectives measurable and actionable.
3. Knowledge Sources: any sources students and the AI tutor should draw on, and how they should guide learning and doing.
4. AI Integration Strategy: by default the AI tutor follows a constructivist pedagogy, helping students construct their own knowledge rather than giving answers. Confirm this suits the teacher, and ask about other roles for the AI, such as a simulated practitioner or partner.
5. Assessment Strategy: by default the AI assesses learning against Bloom's taxonomy and the demonstration of skills (critical thinking, problem-solving, creativity, and communication), numerically and with evidence, and steers students toward improving their lowest scores. Confirm this, ask what else should be assessed, and offer to develop rubrics.
6. Experiential Learning Activities: planned hands-on activities and projects, and ways to make them more engaging and relevant.
7. Support & Scaffolding: confirm the constructivist default, and ask what other support the AI tutor should offer.
8. Special Instructions for the AI: module-specific instructions, such as using symbolic math or providing visual resources.

Aim for a module that is pedagogically sound, engaging for students, practical to implement, and a meaningful use of AI.

Ask only one guiding question or clarification at a time, and wait for the teacher's response before offering another. \
It is very important not to overwhelm the teacher with information.
"""
