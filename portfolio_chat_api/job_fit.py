"""Job fit scoring: compare a job description against the candidate résumé."""

import json

import structlog
from pydantic import ValidationError

from portfolio_chat_api.config import get_settings
from portfolio_chat_api.errors import AnalysisFailed, PortfolioAPIError
from portfolio_chat_api.models import AssessmentResult
from portfolio_chat_api.observability import log_llm_request, log_llm_response
from portfolio_chat_api.openai_client import OpenAIClient

logger = structlog.get_logger()

CANDIDATE_CV = """
Marc Bau Benavent
Consultor de Procesos & Especialista en Automatización e IA
Valencia, España | Idiomas: Español (Nativo), Inglés (B2)

Perfil Profesional
Especialista en automatización inteligente e IA conversacional con experiencia comprobada en sistemas enterprise de alto impacto. Expertise en desarrollo de agentes IA, integración de APIs complejas, y arquitecturas conversacionales multi-criterio. Combinación de capacidades técnicas (n8n, Claude AI, RAG, MCP) con visión consultora para detectar cuellos de botella y proponer soluciones escalables que generan ROI medible.

Experiencia Profesional
AI Developer | Future Applied Intelligence SL (2025)
- Sistema genBI: Business Intelligence con agentes IA y consultas en lenguaje natural sobre PostgreSQL/Supabase usando Model Context Protocol (MCP). Framework de testing automatizado (105 casos). Optimización de prompts.
- Sistema LeadsAI: cualificación automática de leads B2B. Recepción, validación, clasificación y enriquecimiento de leads con Claude Sonnet. Integración con Odoo CRM.
- Sistema Alphabet BMW: clasificación automatizada de terminaciones de contratos con reglas complejas. Procesamiento con ATP y OCR.

AI Integration Specialist | AIAutomatiza (Junio 2025 – Noviembre 2025)
- Asistente Virtual IA para clínica: sistema conversacional WhatsApp + Zoho CRM. Reducción del 90% en tiempo de respuesta. Algoritmo de matching multi-criterio. Motor de disponibilidad. RAG con base de conocimiento dinámica.

Intelligent Automation Specialist | NTT DATA (Abril 2024 – Diciembre 2024)
- Automatización de procesos corporativos enterprise. Integraciones con APIs REST y OutSystems.

Técnico de Soporte IT | F1-Connecting (Carrefour) (Noviembre 2022 – Abril 2023)

Proyectos Personales
- Agente IA para automatización de Meta Ads (n8n, análisis de KPIs en tiempo real).
- Plataforma SaaS de música generativa con IA (Python FastAPI, Next.js, TypeScript).

Competencias Técnicas
- Automatización & IA: n8n, Make, Zapier, Flowise, Claude AI, OpenAI GPT-4o, RAG, Agents, Function Calling.
- Protocolos: MCP, ATP, REST/GraphQL, Webhooks.
- Bases de datos: MySQL, PostgreSQL, Supabase.
- Código: Python, JavaScript, TypeScript, Node.js, FastAPI, Next.js.
- CRM: Zoho, Odoo, HubSpot.

Educación
- Grado en Ingeniería Telemática – Universitat de València (2019)
- Certificaciones: AI Agents Fundamentals (Hugging Face), LLM Fundamentals, AI Fluency (Anthropic).
""".strip()

SYSTEM_PROMPT = """You are an expert AI Recruiter. You respond ONLY in valid JSON format.

The JSON object structure must be EXACTLY:
{
  "matchScore": number (0-100),
  "summary": string (brief, honest but persuasive, 2-3 sentences),
  "strengths": string[] (3-4 key matching skills),
  "gaps": string[] (2-3 missing but constructively framed),
  "verdict": "High Match" | "Potential Match" | "Low Match"
}"""


def build_user_prompt(cv: str, job_description: str) -> str:
    """Combine the résumé and job description into the analysis request."""
    return f"""ANALYZE CANDIDATE FIT based on the provided CV and Job Description.

CANDIDATE CV:
{cv}

JOB DESCRIPTION:
{job_description}

INSTRUCTIONS:
1. Analyze fit based on skills and experience.
2. BE HONEST but BENEFICIAL: Highlight transferable skills. If he knows Python/FastAPI but the job asks for Django, treat it as a strength/minor gap.
3. OUTPUT MUST BE A SINGLE VALID JSON OBJECT.
"""


def parse_assessment(content: str) -> AssessmentResult:
    """Parse and validate the model output.

    Raises:
        AnalysisFailed: If the content is not JSON or does not match the schema.
    """
    try:
        data = json.loads(content)
    except (TypeError, json.JSONDecodeError) as e:
        logger.error("Job fit response is not valid JSON", preview=str(content)[:200])
        raise AnalysisFailed("Failed to analyze job fit") from e

    try:
        return AssessmentResult.model_validate(data)
    except ValidationError as e:
        logger.error("Job fit response does not match schema", errors=e.error_count())
        raise AnalysisFailed("Failed to analyze job fit") from e


class JobFitScorer:
    """Single-shot, stateless job fit assessment."""

    def __init__(self, client: OpenAIClient, cv: str | None = None):
        self._client = client
        self._cv = cv or get_settings().load_resume() or CANDIDATE_CV

    async def analyze(self, job_description: str) -> AssessmentResult:
        """Score the candidate against a job description.

        Raises:
            AnalysisFailed: On any upstream, configuration or parse error. No retry.
        """
        user_prompt = build_user_prompt(self._cv, job_description)
        request_log = log_llm_request(
            model=self._client.model,
            purpose="job_fit",
            system_prompt=SYSTEM_PROMPT,
            user_message=user_prompt,
        )

        try:
            response = await self._client.complete_json(SYSTEM_PROMPT, user_prompt)
        except PortfolioAPIError as e:
            log_llm_response(request_log, error=str(e))
            raise AnalysisFailed("Failed to analyze job fit") from e

        try:
            result = parse_assessment(response.content)
        except AnalysisFailed as e:
            log_llm_response(request_log, error=f"unparseable response: {e.__cause__}")
            raise

        log_llm_response(
            request_log,
            tokens_total=response.tokens_used,
            finish_reason=response.finish_reason,
        )
        logger.info(
            "Job fit assessment completed",
            match_score=result.match_score,
            verdict=result.verdict.value,
        )
        return result
