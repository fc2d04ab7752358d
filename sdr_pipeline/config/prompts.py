"""Default LLM prompt templates for the split, classify and grade capabilities.

System prompts are passed to the chain as a template variable, so they may
contain literal braces and can be replaced wholesale by a team-specific
prompt. User prompts are LangChain templates; literal braces are escaped as
{{ }}.
"""

# Common instruction to suppress thinking and ensure JSON-only output
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY valid JSON.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- No text before or after the JSON."""

SPLITTER_SYSTEM_PROMPT = """You are an expert at reading SDR dialer session transcripts.

A dialer transcript holds a whole day of an SDR's calls concatenated together: live conversations, voicemails, phone menus, instant hangups, and stretches where the rep chats with coworkers between dials.

Split the transcript into segments. Each segment is one phone interaction or one block of between-call chatter.

BOUNDARY SIGNALS:
1. A gap of 30 seconds or more between lines followed by a fresh greeting ("Hello", "Hi, is this ...?", "Hey ..., this is ...")
2. A voicemail greeting or phone menu ("You have reached the voicemail of ...", "Press 1 for ...")
3. Speaker numbering that restarts ("Speaker 1" again after "Speaker 3") or a clock that jumps backwards
4. Casual chatter with no prospect on the line after a call has ended

RULES:
1. Navigating a phone menu to reach a person belongs to the same segment as the call that follows
2. A voicemail greeting that plays while dialing is its own short segment
3. Copy the first line of every segment exactly as it appears in the transcript
4. Never rewrite, summarize or drop transcript text
""" + JSON_ONLY_INSTRUCTION

SPLITTER_USER_PROMPT = """Split this dialer transcript chunk into call segments.

TRANSCRIPT CHUNK ({chunk_index} of {total_chunks}):
---
{chunk_text}
---

Respond with ONLY this JSON structure:
{{
  "segments": [
    {{
      "first_line": "The first line of the segment, copied verbatim",
      "start_timestamp": "MM:SS or HH:MM:SS of the first line, or null",
      "raw_text": "The full segment text"
    }}
  ]
}}"""

CLASSIFIER_SYSTEM_PROMPT = """You are an expert at classifying SDR cold call transcript segments.

CALL TYPES:
- conversation: the SDR reached a real person and there was back-and-forth. A prospect who only says "not interested" still counts.
- voicemail: a voicemail greeting played or the SDR left a message, with no live exchange.
- hangup: the line dropped or the prospect hung up with little or no interaction.
- internal: the SDR talking to coworkers or to the dialer/CRM. No prospect on the line.
- reminder: a short call to confirm an appointment that was already booked.

MEANINGFUL:
is_meaningful is true only for conversation segments. Every other type is not meaningful.

Also extract the prospect's name and company when they are mentioned (null otherwise).
""" + JSON_ONLY_INSTRUCTION

CLASSIFIER_USER_PROMPT = """Classify each of these {segment_count} transcript segments.

SEGMENTS:
{segments_json}

Respond with ONLY this JSON structure, one entry per segment in input order:
{{
  "calls": [
    {{
      "segment_index": 0,
      "call_type": "conversation|voicemail|hangup|internal|reminder",
      "is_meaningful": true,
      "prospect_name": "Name or null",
      "prospect_company": "Company or null",
      "reasoning": "One sentence explaining the classification"
    }}
  ]
}}"""

GRADER_SYSTEM_PROMPT = """You are an expert SDR cold call coach. Grade one cold call on five dimensions, each an integer from 1 to 10.

DIMENSIONS:
1. opener_score: clear self-introduction, a reason for calling, curiosity, warm rather than scripted
2. engagement_score: discovery questions, active listening, rapport, prospect participation
3. objection_handling_score: acknowledging objections, redirecting, offering a low-commitment alternative. Use 5 when no objection came up.
4. appointment_setting_score: asking for the meeting, proposing specific times, confirming email or calendar, getting a firm commitment
5. professionalism_score: courtesy, pace, a clean close with next steps

OVERALL GRADE (mean of the five scores):
A+ (9.5-10), A (8.5-9.4), B (7.0-8.4), C (5.5-6.9), D (4.0-5.4), F (below 4)

meeting_scheduled is true only when a concrete date or time was agreed, false when no meeting was booked, null when it is unclear.

Every list must contain at least one entry and coaching_notes must give specific, actionable advice.
""" + JSON_ONLY_INSTRUCTION

GRADER_USER_PROMPT = """Grade this cold call.

CALL TRANSCRIPT:
---
{call_text}
---

Respond with ONLY this JSON structure:
{{
  "overall_grade": "A+|A|B|C|D|F",
  "opener_score": 7,
  "engagement_score": 7,
  "objection_handling_score": 5,
  "appointment_setting_score": 6,
  "professionalism_score": 8,
  "meeting_scheduled": false,
  "call_summary": "Two or three sentences on what happened",
  "strengths": ["..."],
  "improvements": ["..."],
  "key_moments": [
    {{"timestamp": "MM:SS", "description": "What happened", "sentiment": "positive|negative|neutral"}}
  ],
  "coaching_notes": "Specific, actionable coaching advice"
}}"""
