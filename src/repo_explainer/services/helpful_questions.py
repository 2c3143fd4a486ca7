"""Fixed onboarding questions used when the LLM cannot produce any."""

from __future__ import annotations

from repo_explainer.domain.entities import ProjectType
from repo_explainer.domain.summaries import HelpfulQuestion, ProjectSummary

_GENERIC = (
    HelpfulQuestion(
        question="How do I set up the development environment for this project?",
        answer="Look for package.json, go.mod, pyproject.toml or requirements.txt and the "
        "README for install steps. Docker or compose files usually describe a containerized setup.",
    ),
    HelpfulQuestion(
        question="What is the main entry point of this application?",
        answer="Look for main.go, index.js, server.js, app.py or main.py, and the start "
        "script in package.json if there is one.",
    ),
)

_BACKEND = (
    HelpfulQuestion(
        question="How do I configure the database connection?",
        answer="Check .env files, config.yaml or the connection string in the application "
        "setup. Migrations usually live in migrations/ or db/.",
    ),
    HelpfulQuestion(
        question="What API endpoints are available?",
        answer="Route definitions are usually in routes/, handlers/ or controllers/. Look "
        "for OpenAPI or Swagger documents as well.",
    ),
)

_BY_TYPE: dict[ProjectType, tuple[HelpfulQuestion, ...]] = {
    ProjectType.BACKEND: _BACKEND,
    ProjectType.FULLSTACK: _BACKEND,
    ProjectType.FRONTEND: (
        HelpfulQuestion(
            question="How do I start the development server?",
            answer="Run the dev or start script from package.json (npm run dev, yarn start). "
            "The bundler config (Vite, Webpack) shows the port.",
        ),
        HelpfulQuestion(
            question="What UI framework or library is being used?",
            answer="The dependencies in package.json name the framework (React, Vue, Angular) "
            "and any component or styling library.",
        ),
    ),
    ProjectType.MOBILE: (
        HelpfulQuestion(
            question="How do I run this mobile app?",
            answer="React Native apps start with npx react-native run-ios or run-android; "
            "Flutter apps with flutter run. The README lists platform prerequisites.",
        ),
    ),
    ProjectType.DEVOPS: (
        HelpfulQuestion(
            question="How do I deploy this infrastructure?",
            answer="Look for Terraform files, Kubernetes manifests, compose files and CI "
            "pipelines under .github/workflows or .gitlab-ci.yml.",
        ),
    ),
    ProjectType.DATA_SCIENCE: (
        HelpfulQuestion(
            question="Where do the datasets and notebooks live?",
            answer="Notebooks (.ipynb) and data files (.csv, .parquet) are usually kept in "
            "notebooks/ and data/; environment.yml or requirements.txt pins the libraries.",
        ),
    ),
}


def fallback_questions(
    project_type: ProjectType, project: ProjectSummary | None = None
) -> list[HelpfulQuestion]:
    questions = list(_GENERIC) + list(_BY_TYPE.get(project_type, ()))
    if project is not None and project.purpose:
        questions.append(
            HelpfulQuestion(
                question="What is the main purpose of this project?", answer=project.purpose
            )
        )
    return questions
