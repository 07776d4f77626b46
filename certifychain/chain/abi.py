"""ABI of the deployed CertificateRegistry contract.

Must match the deployed bytecode exactly; do not edit by hand.
"""


def _param(name: str, type_: str, indexed: bool | None = None) -> dict:
    param = {"internalType": type_, "name": name, "type": type_}
    if indexed is not None:
        param = {"indexed": indexed, **param}
    return param


CERTIFICATE_REGISTRY_ABI: list[dict] = [
    {
        "inputs": [
            _param("_registrationFee", "uint256"),
            _param("_certificateIssuanceFee", "uint256"),
        ],
        "stateMutability": "nonpayable",
        "type": "constructor",
    },
    {
        "anonymous": False,
        "inputs": [
            _param("certificateId", "uint256", indexed=True),
            _param("issuer", "address", indexed=True),
            _param("certificateHash", "string", indexed=False),
            _param("timestamp", "uint256", indexed=False),
        ],
        "name": "CertificateIssued",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            _param("certificateId", "uint256", indexed=True),
            _param("issuer", "address", indexed=True),
            _param("timestamp", "uint256", indexed=False),
        ],
        "name": "CertificateRevoked",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            _param("entity", "address", indexed=True),
            _param("name", "string", indexed=False),
            _param("timestamp", "uint256", indexed=False),
        ],
        "name": "EntityRegistered",
        "type": "event",
    },
    {
        "inputs": [_param("_name", "string")],
        "name": "registerEntity",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            _param("_certificateHash", "string"),
            _param("_metadata", "string"),
        ],
        "name": "issueCertificate",
        "outputs": [_param("", "uint256")],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [_param("_certificateId", "uint256")],
        "name": "revokeCertificate",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [_param("_certificateId", "uint256")],
        "name": "verifyCertificate",
        "outputs": [
            _param("id", "uint256"),
            _param("certificateHash", "string"),
            _param("issuer", "address"),
            _param("issuedAt", "uint256"),
            _param("isRevoked", "bool"),
            _param("metadata", "string"),
            _param("issuerName", "string"),
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_param("_entity", "address")],
        "name": "getEntityCertificates",
        "outputs": [_param("", "uint256[]")],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_param("_entity", "address")],
        "name": "getEntityInfo",
        "outputs": [
            _param("entityAddress", "address"),
            _param("name", "string"),
            _param("isActive", "bool"),
            _param("registeredAt", "uint256"),
            _param("certCount", "uint256"),
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "registrationFee",
        "outputs": [_param("", "uint256")],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "certificateIssuanceFee",
        "outputs": [_param("", "uint256")],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_param("", "address")],
        "name": "isRegisteredEntity",
        "outputs": [_param("", "bool")],
        "stateMutability": "view",
        "type": "function",
    },
]

CERTIFICATE_ISSUED_EVENT = "CertificateIssued"
ENTITY_REGISTERED_EVENT = "EntityRegistered"
