"""API route modules, each exposing an APIRouter mounted under /api."""
