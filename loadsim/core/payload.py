from __future__ import annotations

import string
from random import Random
from typing import Any

GPU_MODELS = (
    "GeForce RTX 4090",
    "GeForce RTX 4080 SUPER",
    "GeForce RTX 4070 Ti GAMING X TRIO",
    "GeForce RTX 3060 Ti",
    "Radeon RX 7900 XTX",
    "Radeon RX 7800 XT",
    "Arc A770",
)
RAM_CONFIGS = (16, 32, 64, 128)
STORAGE_SIZES = (512, 1000, 2000, 4000)
SOCKETS = ("AM5", "AM4", "LGA1700", "LGA1851")
CHIPSETS = ("X670E", "B650", "Z790", "Z890", "B760")


class ComputerFactory:
    """Random computer builds in the wire format the target API accepts.

    Field names follow the API's JSON contract; only ``name`` (unique
    constraint), ``placa_video.modelo`` (GPU search) and
    ``memoria_ram.capacidade_total_gb`` (RAM search) matter to the probes.
    """

    def __init__(self, *, name_prefix: str = "PC-SIM", seed: int | None = None) -> None:
        self._prefix = name_prefix
        self._rng = Random(seed)

    def random_suffix(self, length: int = 10) -> str:
        alphabet = string.ascii_letters + string.digits
        return "".join(self._rng.choice(alphabet) for _ in range(length))

    def unique_name(self) -> str:
        return f"{self._prefix}-{self.random_suffix()}"

    def build(self, *, name: str | None = None, gpu_model: str | None = None) -> dict[str, Any]:
        rng = self._rng
        suffix = self.random_suffix()
        ram_gb = rng.choice(RAM_CONFIGS)
        gpu = gpu_model or rng.choice(GPU_MODELS)
        storage = rng.choice(STORAGE_SIZES)
        chipset = rng.choice(CHIPSETS)
        ram_type = "DDR5" if ram_gb >= 64 else "DDR4"

        module = {
            "modelo": "Dominator Platinum RGB",
            "fabricante": "Corsair",
            "capacidade_gb": ram_gb // 2,
            "tipo": ram_type,
            "frequencia_mhz": rng.randint(5600, 7200) if ram_type == "DDR5" else rng.randint(3200, 4800),
            "latencia": f"CL{rng.randint(16, 40)}",
        }

        return {
            "name": name or f"{self._prefix}-{suffix}",
            "price": rng.randint(2500, 35000),
            "fonte": {
                "modelo": f"RM{rng.randint(6, 12) * 100}x",
                "potencia_watts": rng.randint(550, 1200),
                "certificacao": rng.choice(("80 Plus Bronze", "80 Plus Gold", "80 Plus Platinum")),
                "modular": True,
                "fabricante": rng.choice(("Corsair", "Seasonic", "be quiet!")),
            },
            "placa_mae": {
                "modelo": f"ROG STRIX {chipset}-F GAMING WIFI",
                "fabricante": rng.choice(("ASUS", "MSI", "Gigabyte", "ASRock")),
                "socket": rng.choice(SOCKETS),
                "chipset": chipset,
                "formato": rng.choice(("ATX", "Micro-ATX", "E-ATX")),
                "slots_ram": 4,
                "ram_max_gb": 256,
                "slots_pcie": rng.randint(2, 4),
            },
            "placa_video": {
                "modelo": gpu,
                "fabricante": rng.choice(("MSI", "ASUS", "Gigabyte", "Sapphire")),
                "chipset": gpu,
                "memoria_gb": rng.randint(8, 24),
                "tipo_memoria": rng.choice(("GDDR6", "GDDR6X")),
                "clock_mhz": rng.randint(2200, 2800),
                "tdp_watts": rng.randint(150, 450),
                "interface": "PCIe 4.0 x16",
            },
            "memoria_ram": {
                "modulos": [dict(module), dict(module)],
                "capacidade_total_gb": ram_gb,
            },
            "armazenamento": {
                "dispositivos": [
                    {
                        "modelo": "990 PRO",
                        "fabricante": "Samsung",
                        "tipo": "NVMe",
                        "capacidade_gb": storage,
                        "interface": "NVMe PCIe 5.0",
                        "velocidade_leitura_mbps": rng.randint(6000, 14000),
                        "velocidade_escrita_mbps": rng.randint(4000, 12000),
                    },
                    {
                        "modelo": "870 EVO",
                        "fabricante": "Samsung",
                        "tipo": "SSD",
                        "capacidade_gb": storage * 2,
                        "interface": "SATA III",
                        "velocidade_leitura_mbps": 560,
                        "velocidade_escrita_mbps": 530,
                    },
                ],
                "capacidade_total_gb": storage * 3,
            },
            "gabinete": {
                "modelo": "O11 Dynamic EVO",
                "fabricante": rng.choice(("Corsair", "NZXT", "Lian Li")),
                "tipo": "Mid Tower",
                "cor": rng.choice(("Preto", "Branco")),
                "material": "Alumínio com painel de vidro temperado",
                "tamanho_placa_mae_suportado": "E-ATX, ATX, Micro-ATX, Mini-ITX",
                "slots_expansao": 8,
                "baias_35_polegadas": 2,
                "baias_25_polegadas": 4,
                "ventilacao": {
                    "coolers_inclusos": 3,
                    "suporte_radiador": "360mm frontal, 360mm lateral, 240mm traseiro",
                    "slots_ventilacao_frontal": 3,
                    "slots_ventilacao_superior": 3,
                    "slots_ventilacao_traseira": 1,
                },
            },
            "observacoes": f"Load simulation build. ID: {suffix}",
        }
