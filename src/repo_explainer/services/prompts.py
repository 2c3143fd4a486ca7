"""Prompt templates for every LLM call the pipeline makes."""

from __future__ import annotations

# ── Map: one file ───────────────────────────────────────────────────────────

FILE_SYSTEM_PROMPT = """\
You are a code analysis expert.  Analyze the provided code and return ONLY \
valid JSON in the specified format.  No additional text or explanations.
"""

FILE_USER_PROMPT = """\
Analyze this code file and return a JSON object with the following structure:

{{
  "language": "detected programming language",
  "purpose": "brief description of what this file does",
  "key_types": ["important types, classes or structs"],
  "functions": ["important functions or methods"],
  "imports": ["dependencies and imports"],
  "side_effects": ["side effects, if any"],
  "risks": ["potential security risks, if any"],
  "complexity": "low|medium|high"
}}

File path: {path}
Content:
{content}"""

# ── Reduce: one folder ──────────────────────────────────────────────────────

FOLDER_SYSTEM_PROMPT = """\
You are a software architecture expert.  Analyze the provided folder \
structure and file summaries.  Return ONLY valid JSON in the specified format.
"""

FOLDER_USER_PROMPT = """\
Analyze this folder and its file summaries.  Return a JSON object with this structure:

{{
  "path": "{path}",
  "purpose": "what this folder or module is responsible for",
  "languages": {{"language": count}},
  "key_modules": ["important files"],
  "dependencies": ["external dependencies"],
  "architecture": "brief description of the folder's architecture pattern"
}}

Folder path: {path}
File summaries: {summaries}"""

# ── Reduce: whole project ───────────────────────────────────────────────────

PROJECT_SYSTEM_PROMPT = """\
You are a senior software architect.  Analyze the entire project structure \
and create a comprehensive overview.  Return ONLY valid JSON.
"""

PROJECT_USER_PROMPT = """\
Analyze this entire project and create an overview.  Look at component \
names, folder structure, route patterns and business logic to work out the \
REAL purpose and business domain of the project.

Good purpose statements name the domain, not just the technology:
- "A gift recommendation platform that helps users find presents for their partners"
  rather than "A React web application".
- "A marketplace where artisans sell custom handmade jewelry"
  rather than "An e-commerce platform".

Return a JSON object:

{{
  "purpose": "specific business purpose of the project (2-3 lines max)",
  "architecture": "overall architecture description (MVC, microservices, ...)",
  "data_models": ["important data structures"],
  "external_services": ["external APIs, databases and services"],
  "languages": {{"language": total_file_count}}
}}

Project path: {path}
Folder summaries: {summaries}"""

# ── Detailed repository analysis ────────────────────────────────────────────

DETAILS_SYSTEM_PROMPT = """\
You are a precise repository analyst.  Output STRICT JSON only, no prose, \
matching the provided schema exactly.  Do not guess: use only evidence \
present in the summaries and files provided.  If uncertain, return "" or [] \
and lower the confidence.
"""

DETAILS_USER_PROMPT = """\
You are given structured summaries of a code repository (per file and per \
folder) plus key files (README, go.mod or package.json, docker and k8s \
manifests).  Determine:

1) repo_summary_line: one concise sentence describing what the repo does.
2) architecture: "monolith" or "microservices".  If unclear, choose "monolith".
3) repo_layout: "single-repo" or "monorepo".
4) main_stacks: top-level stacks (language plus core runtimes and frameworks) only.
5) monorepo_services: if repo_layout is "monorepo", each deployable service as \
{{name, path, language, short_purpose}}; otherwise [].
6) evidence_paths: file or directory paths that justify the answers.
7) confidence: 0.0 to 1.0.

Rules:
- "monorepo" is a layout, not an architecture.
- Dev and test-only dependencies are not stacks.
- Monorepo evidence: apps/ or services/ directories, several cmd/* binaries, \
several Dockerfiles, workspace files (lerna, turbo, nx, pnpm-workspace, go.work), \
compose files with several services, k8s manifests with several Deployments.
- On conflicting signals prefer fewer stacks and lower confidence.

Inputs:
- file_summaries: {file_summaries}
- folder_summaries: {folder_summaries}
- important_files: {important_files}

Output schema:
{{
  "repo_summary_line": "string",
  "architecture": "monolith" | "microservices",
  "repo_layout": "single-repo" | "monorepo",
  "main_stacks": ["string"],
  "monorepo_services": [
    {{"name": "string", "path": "string", "language": "string", "short_purpose": "string"}}
  ],
  "evidence_paths": ["string"],
  "confidence": 0.0
}}"""

# ── Helpful questions ───────────────────────────────────────────────────────

QUESTIONS_SYSTEM_PROMPT = """\
You are onboarding a new engineer to a codebase.  Write the questions a \
newcomer would ask first, each with a short answer grounded in the project \
overview provided.  Return ONLY valid JSON.
"""

QUESTIONS_USER_PROMPT = """\
Based on this project overview, write 5 to 7 helpful questions with answers.

Return a JSON object:

{{
  "questions": [
    {{"question": "string", "answer": "string (1-3 sentences)"}}
  ]
}}

Project type: {project_type}
Project overview: {overview}"""
