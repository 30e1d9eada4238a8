"""Prompt templates for the RFP pipeline stages.

Templates use {name} placeholders; literal braces in the JSON examples are
doubled. Rendering goes through safe_template_substitute so braces inside
document text never break substitution.
"""

import json
import re
from string import Template
from typing import Any, Iterable


def safe_template_substitute(template: str, **kwargs) -> str:
    """Substitute {name} placeholders without choking on braces in values.

    {{ and }} in the template become literal braces.
    """
    converted = template.replace("{{", "__DOUBLE_OPEN__").replace("}}", "__DOUBLE_CLOSE__")
    # $ in the template body must survive Template
    converted = converted.replace("$", "$$")
    converted = re.sub(r"\{(\w+)\}", r"${\1}", converted)
    converted = converted.replace("__DOUBLE_OPEN__", "{").replace("__DOUBLE_CLOSE__", "}")
    return Template(converted).safe_substitute(**kwargs)


def to_prompt_json(value: Any) -> str:
    """Pretty JSON for embedding structured data in a prompt."""
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


SYSTEM_PROMPT = (
    "You are an expert business analyst specialising in RFP and requirements "
    "documents. Always answer with a single valid JSON object and nothing else."
)


EXTRACTION_PROMPT = """Analyze the following RFP document and extract its structure.

Return ONLY a JSON object with this shape:
{{
  "project_overview": {{
    "title": "string",
    "description": "string",
    "scope": "string",
    "objectives": ["string"]
  }},
  "functional_requirements": [
    {{
      "title": "string",
      "description": "string",
      "priority": "high|medium|low",
      "category": "string",
      "acceptance_criteria": ["string"],
      "estimated_effort": "string"
    }}
  ],
  "non_functional_requirements": [
    {{
      "title": "string",
      "description": "string",
      "priority": "high|medium|low",
      "category": "string",
      "acceptance_criteria": ["string"],
      "estimated_effort": "string"
    }}
  ],
  "technical_specifications": {{
    "platform": ["string"],
    "technologies": ["string"],
    "integrations": ["string"],
    "performance_requirements": ["string"]
  }},
  "business_requirements": {{
    "budget_range": "string",
    "timeline": "string",
    "target_users": "string",
    "success_metrics": ["string"]
  }},
  "keywords": [
    {{"term": "string", "importance": "high|medium|low", "category": "string"}}
  ],
  "risk_factors": [
    {{"factor": "string", "level": "high|medium|low", "mitigation": "string"}}
  ],
  "questions_for_client": ["string"],
  "confidence_score": 0.0
}}

confidence_score is your confidence (0.0-1.0) that the extraction is complete and accurate.

RFP document:
{document}
"""


QUESTION_GENERATION_PROMPT = """You are preparing follow-up questions for a client based on an analysed RFP.

## Project overview
{project_overview}

## Functional requirements
{functional_requirements}

## Non-functional requirements
{non_functional_requirements}

## Technical specifications
{technical_specifications}

## Business requirements
{business_requirements}

## Risk factors
{risk_factors}

Generate at most {max_questions} questions that close the most important gaps.
Focus on these categories: {categories}.
{answer_instruction}

Return ONLY a JSON object with this shape:
{{
  "questions": [
    {{
      "question_text": "string",
      "question_type": "single_choice|multiple_choice|text_short|text_long|number|rating|yes_no|date|checklist",
      "category": "one of the focus categories",
      "priority": "high|medium|low",
      "context": "why this question matters",
      "next_step_impact": "how the answer changes the next step",
      "options": ["only for choice or checklist types"],
      "ai_suggested_answer": "string or null",
      "confidence_score": 0.0
    }}
  ]
}}
"""

ANSWER_INSTRUCTION = (
    "For every question also propose the most likely answer in ai_suggested_answer, "
    "based only on the RFP, with your confidence in confidence_score."
)
NO_ANSWER_INSTRUCTION = "Set ai_suggested_answer to null for every question."


ANSWER_GENERATION_PROMPT = """Propose an answer to a follow-up question about an analysed RFP.

## RFP analysis
{analysis}

## Question ({category})
{question}

Why it matters: {question_context}
{extra_context}{previous_answers}
Answer concretely and practically, based only on the RFP and the context above.

Return ONLY a JSON object with this shape:
{{
  "answer_text": "string",
  "confidence_score": 0.0
}}
"""


CONSOLIDATION_PROMPT = """Consolidate an RFP analysis with the client's answers to follow-up questions.

## Original analysis
{analysis}

## Follow-up questions and answers
{answers}

{depth_instruction}
{recommendation_clause}{focus_clause}
Return ONLY a JSON object with this shape:
{{
  "executive_summary": "string",
  "confidence_score": 0.0,
  "analysis_quality": "high|medium|low",
  "key_insights": ["string"],
  "market_context": {{"summary": "string", "opportunities": ["string"], "threats": ["string"]}},
  "technical_requirements": {{"summary": "string", "priorities": ["string"], "open_issues": ["string"]}},
  "business_implications": {{"summary": "string", "budget_considerations": "string", "timeline_considerations": "string"}},
  "recommended_approach": {{"summary": "string", "phases": ["string"]}},
  "gap_analysis": ["string"],
  "next_steps": ["string"],
  "success_metrics": ["string"]
}}

confidence_score is your confidence (0.0-1.0) in the consolidated insights.
"""

DEPTH_INSTRUCTIONS = {
    "basic": "Provide a basic summary with the key points only.",
    "detailed": "Provide a detailed analysis with concrete recommendations.",
    "comprehensive": "Provide a comprehensive, in-depth analysis with strategic recommendations.",
}

RECOMMENDATION_CLAUSE = "Include specific, actionable recommendations in recommended_approach and next_steps.\n"
NO_RECOMMENDATION_CLAUSE = "Leave recommended_approach empty and limit next_steps to missing information.\n"


SECONDARY_ANALYSIS_PROMPT = """Perform a secondary, deeper analysis of an RFP using additional client answers.

## Full analysis record
{analysis}

## Additional questions and answers
{answers}

Return ONLY a JSON object with this shape:
{{
  "market_research_insights": {{
    "target_market_definition": "string",
    "competitor_analysis_direction": "string",
    "market_size_estimation": "string",
    "key_market_trends": ["string"],
    "research_priorities": ["string"]
  }},
  "persona_analysis_insights": {{
    "primary_persona_characteristics": "string",
    "persona_pain_points": ["string"],
    "persona_goals_motivations": ["string"],
    "persona_scenarios": ["string"],
    "research_focus_areas": ["string"]
  }},
  "enhanced_recommendations": ["string"],
  "integration_points": ["string"]
}}
"""


def format_qa_pairs(pairs: Iterable[tuple[str, str]]) -> str:
    """Numbered Q/A block."""
    lines = []
    for number, (question, answer) in enumerate(pairs, start=1):
        lines.append(f"Q{number}: {question}\nA{number}: {answer}")
    return "\n\n".join(lines)
