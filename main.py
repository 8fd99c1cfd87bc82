"""
Realty Lead Verification API - FastAPI Backend
Main application entry point with CORS and routing setup
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import uvicorn
import os
from dotenv import load_dotenv

# Load environment variables BEFORE importing route modules so services see them
load_dotenv()
from datetime import datetime, timezone

from routes.otp_routes import router as otp_router
from routes.concierge_routes import router as concierge_router
from routes.reference_routes import router as reference_router

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

DEFAULT_ALLOWED_ORIGINS = [
    "https://new-real-estate-purchase.webflow.io",
    "https://www.new-real-estate-purchase.webflow.io",
    "https://theorozcorealty.netlify.app",
    "http://localhost:8888",
]


def allowed_origins():
    raw = os.getenv("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return DEFAULT_ALLOWED_ORIGINS
    return [o.strip() for o in raw.split(",") if o.strip()]


app = FastAPI(
    title="Realty Lead Verification API",
    description="One-time passcode verification, concierge chat and reference data for the lead site",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware for the marketing front end
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)

app.include_router(otp_router, prefix="/otp", tags=["OTP"])
app.include_router(concierge_router, prefix="/api/concierge", tags=["Concierge"])
app.include_router(reference_router, prefix="/api/reference", tags=["Reference"])


@app.get("/")
async def root():
    """Root endpoint with basic API information"""
    return {
        "message": "Realty Lead Verification API",
        "version": "1.0.0",
        "status": "active",
        "endpoints": {
            "health": "/ping",
            "issue": "/otp/issue",
            "verify": "/otp/verify",
            "concierge": "/api/concierge/ask",
            "reference": "/api/reference",
            "docs": "/docs"
        }
    }


@app.get("/ping")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "realty-lead-api"
    }


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler"""
    return JSONResponse(
        status_code=404,
        content={"error": "Endpoint not found", "path": str(request.url.path)}
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Custom 500 handler"""
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "Please try again later"}
    )


if __name__ == "__main__":
    os.makedirs("uploads", exist_ok=True)

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        log_level="info"
    )
