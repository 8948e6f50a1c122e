from inbox_ledger.core.database import Base, engine
from fastapi import FastAPI
from inbox_ledger.routes.processed_messages import processed_router


app = FastAPI(title="Inbox Ledger API", version="1.0.0")

Base.metadata.create_all(bind=engine)

app.include_router(processed_router)


@app.get("/")
def root():
    return {"message": "Inbox Ledger API is running"}
