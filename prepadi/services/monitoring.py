"""
Health checks and monitoring with Prometheus metrics
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response
import time
import psutil
import structlog
from sqlalchemy import func
from sqlmodel import select

from prepadi.db import get_session
from prepadi.models import Exam, Question, User
from prepadi.services.cache import cache

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'])
TOTAL_QUESTIONS = Gauge('question_bank_size', 'Number of questions in the global question bank')
TOTAL_USERS = Gauge('total_users', 'Total number of users in database')
AI_EXTRACTION_REQUESTS = Counter('ai_extraction_requests_total', 'Total AI question extraction requests', ['type', 'status'])
EXTERNAL_SOURCE_REQUESTS = Counter('external_source_requests_total', 'Total external question source requests', ['source', 'status'])
QUESTIONS_IMPORTED = Counter('external_questions_imported_total', 'Questions persisted from external sources', ['source'])
QUIZ_SUBMISSIONS = Counter('quiz_submissions_total', 'Total quiz submissions', ['status'])


class HealthChecker:
    def __init__(self):
        self.start_time = time.time()

    def check_database(self) -> dict:
        """Check database connectivity and health"""
        try:
            session = next(get_session())
            exams = session.exec(select(func.count()).select_from(Exam)).one()
            session.close()

            return {
                "status": "healthy",
                "message": "Database connection successful",
                "exams_count": exams
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "message": f"Database connection failed: {str(e)}"
            }

    def check_cache(self) -> dict:
        """Check cache connectivity"""
        try:
            test_key = "health_check_test"
            cache.set(test_key, "test_value", expire=10)
            value = cache.get(test_key)
            cache.delete(test_key)

            if value == "test_value":
                return {
                    "status": "healthy",
                    "message": "Cache operations successful",
                    "backend": cache.backend
                }
            else:
                return {
                    "status": "unhealthy",
                    "message": "Cache operations failed"
                }
        except Exception as e:
            logger.error(f"Cache health check failed: {e}")
            return {
                "status": "unhealthy",
                "message": f"Cache connection failed: {str(e)}"
            }

    def get_system_metrics(self) -> dict:
        """Get system resource metrics"""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')

            return {
                "cpu_percent": cpu_percent,
                "memory_percent": memory.percent,
                "memory_available_gb": round(memory.available / (1024**3), 2),
                "disk_percent": disk.percent,
                "disk_free_gb": round(disk.free / (1024**3), 2),
                "uptime_seconds": time.time() - self.start_time
            }
        except Exception as e:
            logger.error(f"System metrics collection failed: {e}")
            return {"error": str(e)}

    def get_application_metrics(self) -> dict:
        """Get application-specific metrics"""
        try:
            session = next(get_session())

            bank_size = session.exec(
                select(func.count()).select_from(Question).where(Question.organization_id == None)  # noqa: E711
            ).one()
            total_users = session.exec(select(func.count()).select_from(User)).one()

            session.close()

            TOTAL_QUESTIONS.set(bank_size)
            TOTAL_USERS.set(total_users)

            return {
                "question_bank_size": bank_size,
                "total_users": total_users,
            }
        except Exception as e:
            logger.error(f"Application metrics collection failed: {e}")
            return {"error": str(e)}

    def get_health_status(self) -> dict:
        """Get overall health status"""
        checks = {
            "database": self.check_database(),
            "cache": self.check_cache(),
        }

        system_metrics = self.get_system_metrics()
        app_metrics = self.get_application_metrics()

        unhealthy_checks = [name for name, check in checks.items() if check["status"] == "unhealthy"]
        overall_status = "healthy" if not unhealthy_checks else "unhealthy"

        return {
            "status": overall_status,
            "timestamp": time.time(),
            "checks": checks,
            "system_metrics": system_metrics,
            "application_metrics": app_metrics,
            "unhealthy_components": unhealthy_checks
        }


# Global health checker instance
health_checker = HealthChecker()


def get_metrics():
    """Get Prometheus metrics"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
