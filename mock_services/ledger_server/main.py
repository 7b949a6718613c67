from fastapi import FastAPI, HTTPException, Request
import uuid

app = FastAPI(title="Mock Ledger Server", version="1.0.0")
# goalId -> accepted claim; the ledger itself is idempotent per goal
CLAIMS = {}

@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/mock-ledger/payouts")
async def submit_payout(request: Request):
    claim = await request.json()
    goal_id = claim.get("goalId")
    if not goal_id or not isinstance(claim.get("amount"), (int, float)) or claim["amount"] <= 0:
        raise HTTPException(status_code=400, detail="goalId and a positive amount are required")
    if goal_id not in CLAIMS:
        CLAIMS[goal_id] = {**claim, "transactionReference": f"tx_{uuid.uuid4().hex[:16]}"}
    return {"transactionReference": CLAIMS[goal_id]["transactionReference"], "status": "settled"}

@app.get("/mock-ledger/payouts")
def list_payouts(): return {"payouts": list(CLAIMS.values())}
