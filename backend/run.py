# backend/run.py
import sys
import uvicorn
from docmanager.config import settings

def main():
    try:
        uvicorn.run(
            "docmanager.main:app",
            host=settings.API_HOST,
            port=settings.API_PORT,
            reload=settings.API_RELOAD,
            log_level=settings.LOG_LEVEL.lower()
        )
    except Exception as e:
        print(f"Error starting the document manager API: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
