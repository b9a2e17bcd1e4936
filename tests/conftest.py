"""
Shared fixtures for the resume pipeline tests.

External tools (LaTeX engine, poppler) and the LLM are always mocked; audit
logs and saved PDFs go to a per-test temporary directory.
"""

import json

import pytest

import config

RESUME_LATEX = r"""\documentclass[letterpaper,11pt]{article}
\usepackage[margin=0.5in]{geometry}
\begin{document}
\begin{center}\textbf{\Large Jane Doe} \\ jane@example.com\end{center}
\section{Experience}
\textbf{Acme Corp} -- Software Engineer \hfill 2020--2024
\begin{itemize}
  \item Built a distributed job scheduler handling 2M tasks per day
  \item Cut p99 API latency from 800ms to 120ms by adding a read-through cache
  \item Led migration of 40 services from VMs to Kubernetes
  \item Mentored four junior engineers through their first on-call rotation
\end{itemize}
\section{Education}
\textbf{State University} -- B.S. Computer Science \hfill 2016--2020
\begin{itemize}
  \item Graduated with honors
  \item Teaching assistant for Operating Systems
\end{itemize}
\section{Skills}
Python, Go, PostgreSQL, Kubernetes, Terraform
\end{document}"""

JOB_OFFER = "Senior Backend Engineer. Python, Kubernetes, distributed systems."


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep audit logs and saved PDFs out of the working tree."""
    monkeypatch.setattr(config, 'LOGS_DIR', str(tmp_path / 'logs'))
    monkeypatch.setattr(config, 'PDF_OUTPUT_DIR', str(tmp_path / 'pdfs'))
    return tmp_path


@pytest.fixture
def resume_latex():
    return RESUME_LATEX


@pytest.fixture
def job_offer():
    return JOB_OFFER


@pytest.fixture
def json_reply():
    """Build a JSON-mode LLM reply."""
    def _build(latex=RESUME_LATEX, summary='• Tailored bullets to the job'):
        return json.dumps({'latex': latex, 'summary': summary})
    return _build
