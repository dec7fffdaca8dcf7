import json

import httpx

from fhe_relayer.adapters import EVMContractGateway
from fhe_relayer.clients import RemoteFheClient

api_key = "rk_xxxx"  # Replace with the key printed by server_example.py
wpk = "0xxxx"  # Replace with the wallet private key
contract = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

with open("Counter.abi.json", encoding="utf-8") as f:
    abi = json.load(f)

# pure-relay mutations come back unsigned and are submitted from here
gateway = EVMContractGateway(rpc_url="http://localhost:8545", chain_id=11155111)


async def main():
    async with RemoteFheClient(
        wpk,
        contract,
        abi,
        api_key=api_key,
        gateway=gateway,
        base_url="http://localhost:4000",
        timeout=httpx.Timeout(60.0, read=120.0),
    ) as client:
        await client.open_session()
        await client.mutate("increment", [5])
        return await client.read("getCount")


if __name__ == "__main__":
    import asyncio
    response = asyncio.run(main())
    print("Count:", response.value)
